import time
from enum import Enum
from dataclasses import dataclass, field


class RunStatus(Enum):
    IDLE = "Idle"
    RUNNING = "Running"
    FINISHED = "Finished"
    INTERRUPTED = "Interrupted"
    FAILED = "Failed"  # launch never happened: script write or spawn error


@dataclass(frozen=True)
class RunRequest:
    """Editor text captured at the moment Run was pressed."""
    text: str
    created_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class RunState:
    status: RunStatus = RunStatus.IDLE
    exit_code: int = None
    run_id: int = 0
    error: str = None

    def describe(self):
        if self.status is RunStatus.FINISHED:
            return f"{self.status.value} (exit code {self.exit_code})"
        if self.status is RunStatus.FAILED and self.error:
            return f"{self.status.value}: {self.error}"
        return self.status.value


@dataclass(frozen=True)
class OutputSnapshot:
    stdout: str = ""
    stderr: str = ""
    taken_at: float = field(default_factory=time.time)
