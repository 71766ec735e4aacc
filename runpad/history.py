import os
import csv
import json
import logging
import threading
from datetime import datetime

logger = logging.getLogger(__name__)

CSV_HEADER = ["Timestamp", "Run", "Script Path", "Status", "Exit Code", "Error"]


class RunHistory:
    """Append-only JSON-lines log with one entry per completed run."""

    def __init__(self, path):
        self.path = path
        self._lock = threading.Lock()

    def record(self, state, script_path):
        entry = {
            "timestamp": datetime.now().strftime('%Y-%m-%d %H:%M:%S'),
            "run_id": state.run_id,
            "script": script_path,
            "status": state.status.value,
            "exit_code": state.exit_code,
            "error": state.error if state.error else "None",
        }
        try:
            with self._lock:
                directory = os.path.dirname(self.path)
                if directory:
                    os.makedirs(directory, exist_ok=True)
                with open(self.path, 'a', encoding='utf-8') as log_file:
                    log_file.write(json.dumps(entry) + '\n')
        except OSError as e:
            # History is a convenience, never a reason to fail a run
            logger.error("Failed to write run history to '%s': %s", self.path, e)
            return None
        return entry

    def entries(self, keyword=None, limit=100):
        """Most recent entries, oldest first, optionally filtered by keyword."""
        if not os.path.exists(self.path):
            return []
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                raw_lines = f.readlines()
        except OSError as e:
            logger.error("Failed to read run history '%s': %s", self.path, e)
            return []

        keyword = keyword.lower() if keyword else None
        result = []
        for line in raw_lines:
            line = line.strip()
            if not line:
                continue
            try:
                entry = json.loads(line)
            except json.JSONDecodeError:
                logger.warning("Skipped malformed history line: %s", line)
                continue
            if keyword and keyword not in json.dumps(entry).lower():
                continue
            result.append(entry)
        if limit:
            result = result[-limit:]
        return result

    def export_csv(self, destination):
        entries = self.entries(limit=None)
        with open(destination, 'w', newline='', encoding='utf-8') as csvfile:
            writer = csv.writer(csvfile)
            writer.writerow(CSV_HEADER)
            for entry in entries:
                writer.writerow([
                    entry.get('timestamp', 'N/A'),
                    entry.get('run_id', 'N/A'),
                    entry.get('script', 'N/A'),
                    entry.get('status', 'N/A'),
                    '' if entry.get('exit_code') is None else entry['exit_code'],
                    entry.get('error', 'None'),
                ])
        return len(entries)
