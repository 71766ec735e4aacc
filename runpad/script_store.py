import os
import logging

from runpad.errors import ScriptWriteError

logger = logging.getLogger(__name__)


class ScriptFileStore:
    """Keeps the editor text in one fixed script file."""

    def __init__(self, path):
        self.path = path

    def persist(self, script_text):
        """Replace the script file's contents with ``script_text``."""
        try:
            directory = os.path.dirname(self.path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            # newline='' keeps the user's line endings exactly as typed
            with open(self.path, 'w', encoding='utf-8', newline='') as f:
                f.write(script_text)
        except OSError as e:
            logger.error("Failed to write script file '%s': %s", self.path, e)
            raise ScriptWriteError(self.path, e) from e
        logger.debug("Wrote %d characters to '%s'", len(script_text), self.path)
        return self.path

    def load(self):
        """Last persisted script, or an empty string when there is none."""
        try:
            with open(self.path, 'r', encoding='utf-8', errors='replace', newline='') as f:
                return f.read()
        except FileNotFoundError:
            return ""
        except OSError as e:
            logger.warning("Could not read script file '%s': %s", self.path, e)
            return ""
