import os
import sys
import json
import logging
import platform
from dataclasses import dataclass, field, asdict, fields

from runpad.errors import SettingsError

logger = logging.getLogger(__name__)

APP_NAME = "Runpad"
SETTINGS_FILE_NAME = "settings.json"
HISTORY_FILE_NAME = "run_history.txt"
LOG_FILE_NAME = "runpad.log"

SCRIPT_PLACEHOLDER = "{script}"


def get_app_dir():
    """Writable per-user directory holding settings, logs and run files."""
    override = os.getenv("RUNPAD_HOME")
    if override:
        app_dir = override
    elif platform.system() == "Windows":
        app_dir = os.path.join(os.getenv("APPDATA") or os.path.expanduser("~"), APP_NAME)
    else:
        app_dir = os.path.join(os.path.expanduser("~"), "." + APP_NAME.lower())
    os.makedirs(app_dir, exist_ok=True)
    return app_dir


def default_interpreter():
    # -u keeps the child's stdout unbuffered so the poller sees output while it runs
    return [sys.executable, "-u"]


@dataclass
class RunnerSettings:
    interpreter: list = field(default_factory=default_interpreter)
    script_path: str = os.path.join("run", "script.py")
    stdout_path: str = os.path.join("run", "output.txt")
    stderr_path: str = os.path.join("run", "errors.txt")
    poll_interval_ms: int = 100
    term_timeout: float = 2.0
    base_dir: str = field(default="", repr=False, compare=False)

    def resolve(self, path):
        """Relative paths are taken relative to the base (application) directory."""
        path = os.path.expanduser(path)
        if os.path.isabs(path) or not self.base_dir:
            return os.path.abspath(path)
        return os.path.abspath(os.path.join(self.base_dir, path))

    @property
    def script_file(self):
        return self.resolve(self.script_path)

    @property
    def stdout_file(self):
        return self.resolve(self.stdout_path)

    @property
    def stderr_file(self):
        return self.resolve(self.stderr_path)

    def build_command(self):
        """Interpreter argv pointed at the script file.

        Arguments containing ``{script}`` get the script path substituted;
        when no argument does, the path is appended.
        """
        script = self.script_file
        if any(SCRIPT_PLACEHOLDER in arg for arg in self.interpreter):
            return [arg.replace(SCRIPT_PLACEHOLDER, script) for arg in self.interpreter]
        return list(self.interpreter) + [script]

    def to_dict(self):
        data = asdict(self)
        data.pop("base_dir")
        return data

    @classmethod
    def from_dict(cls, data, base_dir=""):
        known = {f.name for f in fields(cls)} - {"base_dir"}
        settings = cls(**{k: v for k, v in data.items() if k in known}, base_dir=base_dir)

        # Bad values fall back to defaults rather than breaking every run
        if isinstance(settings.interpreter, str):
            settings.interpreter = settings.interpreter.split()
        if not settings.interpreter:
            logger.warning("Empty interpreter command in settings, using default.")
            settings.interpreter = default_interpreter()
        try:
            settings.poll_interval_ms = max(10, int(settings.poll_interval_ms))
        except (TypeError, ValueError):
            logger.warning("Invalid poll_interval_ms %r, using 100.", settings.poll_interval_ms)
            settings.poll_interval_ms = 100
        try:
            settings.term_timeout = max(0.0, float(settings.term_timeout))
        except (TypeError, ValueError):
            logger.warning("Invalid term_timeout %r, using 2.0.", settings.term_timeout)
            settings.term_timeout = 2.0
        return settings


def settings_file_path(app_dir=None):
    return os.path.join(app_dir or get_app_dir(), SETTINGS_FILE_NAME)


def load_settings(app_dir=None):
    """Defaults updated with whatever the settings file holds.

    A missing file is not an error; an unreadable or corrupt one raises
    SettingsError so the caller can warn and carry on with defaults.
    """
    app_dir = app_dir or get_app_dir()
    path = settings_file_path(app_dir)
    data = {}
    if os.path.exists(path):
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise SettingsError(f"Failed to load settings from '{path}': {e}") from e
        if not isinstance(data, dict):
            raise SettingsError(f"Invalid settings file '{path}': expected a JSON object")
    return RunnerSettings.from_dict(data, base_dir=app_dir)


def save_settings(settings, app_dir=None):
    app_dir = app_dir or settings.base_dir or get_app_dir()
    path = settings_file_path(app_dir)
    try:
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(settings.to_dict(), f, indent=4, ensure_ascii=False)
    except OSError as e:
        raise SettingsError(f"Failed to save settings to '{path}': {e}") from e
    return path
