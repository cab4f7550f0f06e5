import threading


class CalculationCancelled(Exception):
    """Raised when a long-running calculation is aborted through its token"""


class CancellationToken:
    """Thread-safe flag a caller can set to stop a running batch"""

    def __init__(self):
        self._event = threading.Event()
        self.reason = None

    def cancel(self, reason='Cancelled by caller'):
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self):
        return self._event.is_set()

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise CalculationCancelled(self.reason)
