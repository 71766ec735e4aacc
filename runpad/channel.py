import logging
import threading

logger = logging.getLogger(__name__)


class StateChannel:
    """Holds the latest published value and hands it to subscribers.

    One component owns a channel and is the only caller of ``publish``;
    everybody else reads ``latest`` or subscribes. Subscribers run on the
    publishing thread, so GUI code has to hop threads itself (see
    ``runpad.gui.OutputEmitter``).
    """

    def __init__(self, name, initial):
        self.name = name
        self._value = initial
        self._lock = threading.Lock()
        self._subscribers = []

    @property
    def latest(self):
        with self._lock:
            return self._value

    def subscribe(self, callback, replay=False):
        with self._lock:
            self._subscribers.append(callback)
            value = self._value
        if replay:
            self._deliver(callback, value)
        return callback

    def unsubscribe(self, callback):
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    def publish(self, value):
        with self._lock:
            self._value = value
            subscribers = list(self._subscribers)
        for callback in subscribers:
            self._deliver(callback, value)

    def _deliver(self, callback, value):
        # A broken observer must not stop the poller or a run's watcher thread
        try:
            callback(value)
        except Exception:
            logger.exception("Subscriber %r of channel '%s' failed", callback, self.name)
