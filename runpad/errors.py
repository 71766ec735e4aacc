class RunpadError(Exception):
    """Base class for errors raised by runpad."""


class ScriptWriteError(RunpadError):
    """The editor text could not be written to the script file."""

    def __init__(self, path, reason):
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to write script '{path}': {reason}")


class LaunchError(RunpadError):
    """The external process could not be started."""

    def __init__(self, command, reason):
        self.command = list(command)
        self.reason = reason
        super().__init__(reason)


class SettingsError(RunpadError):
    """The settings file exists but could not be read."""
