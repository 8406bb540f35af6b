import atexit
import logging
import queue
import threading
from logging.handlers import QueueListener
from typing import List, Optional


class AsyncLoggingManager:
    """
    Moves handler I/O onto a background thread via QueueHandler/QueueListener
    so that logging from the receive path never blocks the event loop.
    """

    _instance: Optional['AsyncLoggingManager'] = None
    _lock = threading.Lock()

    def __new__(cls):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if not hasattr(self, '_initialized'):
            self._initialized = True
            self.log_queue: Optional[queue.Queue] = None
            self.queue_listener: Optional[QueueListener] = None
            self.handlers: List[logging.Handler] = []

    def setup_async_logging(self, handlers: List[logging.Handler]) -> queue.Queue:
        """Start a listener thread feeding ``handlers`` and return the queue loggers should write to"""
        # Reconfiguring replaces the previous listener
        self.stop()

        self.log_queue = queue.Queue(maxsize=10000)
        self.handlers = handlers
        self.queue_listener = QueueListener(self.log_queue, *handlers, respect_handler_level=True)
        self.queue_listener.start()
        atexit.register(self.stop)
        return self.log_queue

    def stop(self):
        """Stop the queue listener and flush remaining logs."""
        if self.queue_listener:
            self.queue_listener.stop()
            self.queue_listener = None

        for handler in self.handlers:
            handler.flush()
            handler.close()
        self.handlers = []

    def is_running(self) -> bool:
        return self.queue_listener is not None
