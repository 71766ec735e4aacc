import os
import sys
import queue
import logging
import threading
import subprocess
import contextlib
from concurrent.futures import Future

import psutil

from runpad.channel import StateChannel
from runpad.errors import LaunchError, ScriptWriteError
from runpad.script_store import ScriptFileStore
from runpad.status import RunRequest, RunState, RunStatus

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == "win32"

# How often a run's watcher thread checks its process and cancellation token
WATCH_INTERVAL = 0.05


def _open_capture(path):
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    # 'w' truncates: every run starts from empty capture files
    return open(path, 'w', encoding='utf-8')


class ProcessLifecycleManager:
    """Runs one external process at a time and publishes its RunState.

    ``start`` always supersedes: the current process, if any, is terminated and
    reaped before the next one is spawned, and both happen under the same lock,
    so two live handles never coexist. Each run gets a watcher thread that polls
    the process and a cancellation token; ``stop`` sets the token and kills the
    process tree, which tells the watcher to leave the state alone.

    ``start`` and ``stop`` block for as long as the old process takes to die.
    ``request_start`` and ``request_stop`` hand the same work to the lifecycle
    worker thread and return a Future right away; the GUI uses those.
    """

    def __init__(self, settings, history=None):
        self.settings = settings
        self.history = history
        self.status_channel = StateChannel("run-state", RunState())
        self._lock = threading.RLock()
        self._process = None
        self._cancel = None
        self._watcher = None
        self._script_path = None
        self._run_id = 0
        self._requests = queue.Queue()
        self._worker = None
        self._worker_lock = threading.Lock()

    @property
    def state(self):
        return self.status_channel.latest

    @property
    def is_running(self):
        return self.state.status is RunStatus.RUNNING

    @property
    def pid(self):
        with self._lock:
            return self._process.pid if self._process else None

    def subscribe(self, callback, replay=False):
        return self.status_channel.subscribe(callback, replay=replay)

    def start(self, script_text):
        """Write ``script_text`` to the script file and run it.

        Raises ScriptWriteError or LaunchError after publishing a FAILED state.
        Returns the new run id.
        """
        request = script_text if isinstance(script_text, RunRequest) else RunRequest(script_text)
        with self._lock:
            self._stop_locked()

            self._run_id += 1
            run_id = self._run_id
            # Settings may be swapped from the GUI thread; this run sticks to one copy
            settings = self.settings
            script_path = settings.script_file
            try:
                ScriptFileStore(script_path).persist(request.text)
                process = self._spawn(settings)
            except (ScriptWriteError, LaunchError) as e:
                logger.error("Run %d failed to launch: %s", run_id, e)
                self._publish(RunState(RunStatus.FAILED, run_id=run_id, error=str(e)), script_path)
                raise

            cancel = threading.Event()
            self._process = process
            self._cancel = cancel
            self._script_path = script_path
            logger.info("Run %d started pid=%s", run_id, process.pid)
            self._publish(RunState(RunStatus.RUNNING, run_id=run_id), script_path)

            self._watcher = threading.Thread(
                target=self._watch,
                args=(run_id, process, cancel, script_path),
                name=f"runpad-run-{run_id}",
                daemon=True,
            )
            self._watcher.start()
        return run_id

    def stop(self):
        """Kill the current process.

        Returns True when a live process was killed, False when nothing was
        running or the process had already exited on its own.
        """
        with self._lock:
            return self._stop_locked()

    def request_start(self, script_text):
        """Queue ``start`` on the lifecycle worker. The Future holds the run id or the launch error."""
        request = script_text if isinstance(script_text, RunRequest) else RunRequest(script_text)
        return self._post(self.start, request)

    def request_stop(self):
        """Queue ``stop`` on the lifecycle worker. The Future holds its return value."""
        return self._post(self.stop)

    def shutdown(self, timeout=5.0):
        """Drop queued requests, stop the current run and wait for the worker and watcher threads."""
        with self._worker_lock:
            worker, self._worker = self._worker, None
            if worker is not None:
                self._cancel_pending()
                self._requests.put(None)
        if worker is not None and worker is not threading.current_thread():
            worker.join(timeout)

        with self._lock:
            self._stop_locked()
            watcher = self._watcher
            self._watcher = None
        if watcher is not None and watcher is not threading.current_thread():
            watcher.join(timeout)

    def _post(self, func, *args):
        future = Future()
        with self._worker_lock:
            if self._worker is None:
                self._worker = threading.Thread(target=self._work, name="runpad-lifecycle", daemon=True)
                self._worker.start()
            self._requests.put((func, args, future))
        return future

    def _cancel_pending(self):
        while True:
            try:
                item = self._requests.get_nowait()
            except queue.Empty:
                return
            if item is not None:
                item[2].cancel()

    def _work(self):
        while True:
            item = self._requests.get()
            if item is None:
                return
            func, args, future = item
            if not future.set_running_or_notify_cancel():
                continue
            try:
                result = func(*args)
            except Exception as e:
                # Handed to whoever holds the Future; launch errors are already logged
                future.set_exception(e)
            else:
                future.set_result(result)

    def _spawn(self, settings):
        command = settings.build_command()
        cwd = os.path.dirname(settings.script_file) or None

        kwargs = {}
        if IS_WINDOWS:
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            # Own session: a Ctrl+C in the launching terminal does not reach the script
            kwargs["start_new_session"] = True

        with contextlib.ExitStack() as stack:
            try:
                stdout_file = stack.enter_context(_open_capture(settings.stdout_file))
                stderr_file = stack.enter_context(_open_capture(settings.stderr_file))
            except OSError as e:
                raise LaunchError(command, f"Cannot open capture file: {e}") from e

            # The child keeps its own copies of the descriptors; ours close on exit
            try:
                return subprocess.Popen(
                    command,
                    stdin=subprocess.DEVNULL,
                    stdout=stdout_file,
                    stderr=stderr_file,
                    cwd=cwd,
                    **kwargs,
                )
            except FileNotFoundError as e:
                raise LaunchError(command, f"Command not found: '{command[0]}'. "
                                           "Check the interpreter command in Settings.") from e
            except PermissionError as e:
                raise LaunchError(command, f"Permission denied to execute '{command[0]}'.") from e
            except OSError as e:
                raise LaunchError(command, f"Failed to start '{command[0]}': {e}") from e

    def _stop_locked(self):
        process, cancel = self._process, self._cancel
        if process is None:
            return False
        cancel.set()
        self._process = None
        self._cancel = None
        script_path = self._script_path
        run_id = self.state.run_id

        exit_code = process.poll()
        if exit_code is not None:
            # Exited on its own before the watcher got to report it
            logger.info("Run %d had already finished with code %s", run_id, exit_code)
            self._publish(RunState(RunStatus.FINISHED, exit_code=exit_code, run_id=run_id), script_path)
            return False

        logger.info("Stopping run %d pid=%s", run_id, process.pid)
        self._terminate(process)
        self._publish(RunState(RunStatus.INTERRUPTED, run_id=run_id), script_path)
        return True

    def _terminate(self, process):
        timeout = self.settings.term_timeout
        # Collect descendants first: once the parent dies they get reparented
        try:
            parent = psutil.Process(process.pid)
            procs = [parent] + parent.children(recursive=True)
        except psutil.Error as e:
            logger.debug("Cannot inspect pid=%s, killing it directly: %s", process.pid, e)
            process.kill()
            process.wait()
            return

        for proc in procs:
            try:
                proc.terminate()
            except psutil.NoSuchProcess:
                pass

        # One grace period for the whole tree, not one per process
        _, alive = psutil.wait_procs(procs, timeout=timeout)
        if alive:
            logger.warning("pids %s ignored terminate, killing them", [p.pid for p in alive])
            for proc in alive:
                try:
                    proc.kill()
                except psutil.NoSuchProcess:
                    pass
        # Reap our own child; orphaned descendants are reaped by init
        process.wait()

    def _watch(self, run_id, process, cancel, script_path):
        while process.poll() is None:
            if cancel.wait(WATCH_INTERVAL):
                return
        with self._lock:
            if cancel.is_set() or run_id != self._run_id:
                return
            self._process = None
            self._cancel = None
            logger.info("Run %d finished with code %s", run_id, process.returncode)
            self._publish(RunState(RunStatus.FINISHED, exit_code=process.returncode, run_id=run_id),
                          script_path)

    def _publish(self, state, script_path):
        self.status_channel.publish(state)
        if self.history is not None and state.status is not RunStatus.RUNNING:
            self.history.record(state, script_path)
