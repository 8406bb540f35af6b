"""
Mictrack GPS Tracker TCP Receiver

Accepts tracker connections, reassembles frames per connection and raises
beacon / error events to subscribers. Nothing is ever sent back to the
device.
"""
import asyncio
import inspect
import logging
import socket
import threading
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Set

from config import Settings, get_settings
from .connection_buffer import BufferOverflowError, ConnectionBuffer
from .models import (
    BeaconReceivedEvent,
    ConnectionErrorEvent,
    DecodeErrorEvent,
    ErrorEvent,
)
from .protocols import MictrackProtocolHandler, ProtocolViolationError, ViolationKind

logger = logging.getLogger(__name__)

ACCEPT_RETRY_DELAY = 0.5  # Seconds to back off after a failed accept (e.g. EMFILE)

BeaconHandler = Callable[[BeaconReceivedEvent], Any]
ErrorHandler = Callable[[ErrorEvent], Any]


class ListenerStateError(RuntimeError):
    """Receiver started twice, or started after it was stopped"""


def format_peername(peername) -> str:
    """Render a socket address as host:port ([host]:port for IPv6)"""
    if not peername:
        return "unknown"
    if isinstance(peername, tuple) and len(peername) >= 2:
        host, port = peername[0], peername[1]
        if ":" in host:
            return f"[{host}]:{port}"
        return f"{host}:{port}"
    return str(peername)


class MictrackClientProtocol(asyncio.Protocol):
    """Receive loop for a single tracker connection"""

    def __init__(self, receiver: "MictrackReceiver", remote_address: str):
        self.receiver = receiver
        self.remote_address = remote_address
        self.transport = None
        self.buffer = ConnectionBuffer(remote_address, max_size=receiver.settings.GPS_TCP_MAX_BUFFER_SIZE)
        self.handler = MictrackProtocolHandler()
        self.closed = False
        self.frame_count = 0
        self.last_activity = time.time()

    def connection_made(self, transport):
        self.transport = transport

        sock = transport.get_extra_info('socket')
        if sock is not None:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)

        self.receiver.active_connections[id(self)] = self
        self.receiver.stats['connections_accepted'] += 1
        logger.debug(f"GPS tracker connected from {self.remote_address} (total: {len(self.receiver.active_connections)})")

    def data_received(self, data):
        if self.closed:
            return
        self.last_activity = time.time()

        try:
            for frame in self.buffer.feed(data):
                self._process_frame(frame)
        except BufferOverflowError as e:
            logger.warning(f"Buffer overflow from {self.remote_address}, closing connection")
            self.receiver.stats['oversized_messages'] += 1
            self.receiver.emit_error(ConnectionErrorEvent(remote_address=self.remote_address, message=str(e)))
            self.close()

    def _process_frame(self, frame: bytes):
        self.frame_count += 1
        self.receiver.stats['frames_received'] += 1

        try:
            beacon = self.handler.parse_bytes(frame, self.receiver.settings.GPS_TCP_ENCODING)
        except ProtocolViolationError as e:
            logger.warning(f"Invalid message from {self.remote_address}: {e.message}")
            self.receiver.stats['decode_errors'] += 1
            self.receiver.emit_error(
                DecodeErrorEvent(remote_address=self.remote_address, message=e.message, kind=e.kind.value)
            )
            return

        self.receiver.stats['beacons_decoded'] += 1
        logger.debug(f"Beacon from {beacon.imei} at {self.remote_address}: {beacon.status.value}, {len(beacon.records)} records")
        self.receiver.emit_beacon(BeaconReceivedEvent(remote_address=self.remote_address, beacon=beacon))

    def eof_received(self):
        remainder = self.buffer.clear()
        if remainder.strip():
            message = f"Connection closed with {len(remainder)} bytes of an incomplete message."
            logger.warning(f"{self.remote_address}: {message}")
            self.receiver.stats['decode_errors'] += 1
            self.receiver.emit_error(
                DecodeErrorEvent(
                    remote_address=self.remote_address,
                    message=message,
                    kind=ViolationKind.MISSING_TERMINATOR.value,
                )
            )
        # Returning False lets the transport close itself
        return False

    def connection_lost(self, exc):
        self.closed = True
        self.receiver.active_connections.pop(id(self), None)

        if exc is not None:
            logger.warning(f"GPS tracker connection from {self.remote_address} failed: {exc}")
            self.receiver.stats['connection_errors'] += 1
            self.receiver.emit_error(ConnectionErrorEvent(remote_address=self.remote_address, message=str(exc)))
        else:
            logger.debug(f"GPS tracker disconnected from {self.remote_address}")

    def close(self):
        self.closed = True
        if self.transport and not self.transport.is_closing():
            self.transport.close()


class MictrackReceiver:
    """
    TCP receiver for Mictrack trackers.

    Lifecycle is Stopped -> Running -> Stopped; a stopped receiver is
    disposed and cannot be started again.
    """

    def __init__(self, settings: Optional[Settings] = None,
                 on_beacon: Optional[BeaconHandler] = None,
                 on_error: Optional[ErrorHandler] = None):
        self.settings = settings or get_settings()
        self._beacon_handlers: List[BeaconHandler] = []
        self._error_handlers: List[ErrorHandler] = []
        if on_beacon:
            self.add_beacon_handler(on_beacon)
        if on_error:
            self.add_error_handler(on_error)

        self.active_connections: Dict[int, MictrackClientProtocol] = {}
        self.stats = {
            'start_time': None,
            'connections_accepted': 0,
            'frames_received': 0,
            'beacons_decoded': 0,
            'decode_errors': 0,
            'connection_errors': 0,
            'oversized_messages': 0,
        }

        # start() can race with a concurrent stop()
        self._state_lock = threading.Lock()
        self._running = False
        self._disposed = False
        self._socket: Optional[socket.socket] = None
        self._accept_task: Optional[asyncio.Task] = None
        self._handler_tasks: Set[asyncio.Task] = set()
        self._stopped = asyncio.Event()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    @property
    def bound_address(self) -> Optional[tuple]:
        """Actual (host, port) being listened on, None when not running"""
        sock = self._socket
        if sock is None:
            return None
        return sock.getsockname()[:2]

    def add_beacon_handler(self, handler: BeaconHandler):
        self._beacon_handlers.append(handler)

    def add_error_handler(self, handler: ErrorHandler):
        self._error_handlers.append(handler)

    async def start(self):
        """Bind, listen and begin accepting connections"""
        with self._state_lock:
            if self._disposed:
                raise ListenerStateError("Receiver has been stopped and cannot be started again.")
            if self._running:
                raise ListenerStateError("Receiver is already running.")

            self._socket = self._create_socket()
            self._running = True
            self.stats['start_time'] = datetime.now()
            self._accept_task = asyncio.get_running_loop().create_task(self._accept_loop())

        host, port = self.bound_address
        logger.info(f"Mictrack receiver started on {host}:{port}")
        logger.info("Configuration:")
        logger.info(f"  - Backlog: {self.settings.GPS_TCP_BACKLOG}")
        logger.info(f"  - Max buffer size: {self.settings.GPS_TCP_MAX_BUFFER_SIZE} bytes")

    def _create_socket(self) -> socket.socket:
        host = self.settings.GPS_TCP_HOST
        family = socket.AF_INET6 if ":" in host else socket.AF_INET
        sock = socket.create_server(
            (host, self.settings.GPS_TCP_PORT),
            family=family,
            backlog=self.settings.GPS_TCP_BACKLOG,
        )
        sock.setblocking(False)
        return sock

    async def _accept_loop(self):
        loop = asyncio.get_running_loop()
        # The bound port, not the configured one, which may be 0
        listen_address = format_peername(self._socket.getsockname())

        while True:
            try:
                conn, peername = await loop.sock_accept(self._socket)
            except OSError as e:
                if not self._running:
                    # Listening socket closed underneath us during shutdown
                    return
                logger.warning(f"Error accepting connection on {listen_address}: {e}")
                self.stats['connection_errors'] += 1
                self.emit_error(ConnectionErrorEvent(remote_address=listen_address, message=str(e)))
                await asyncio.sleep(ACCEPT_RETRY_DELAY)
                continue

            # Captured now, the socket may not know its peer after an error
            remote_address = format_peername(peername)
            try:
                await loop.connect_accepted_socket(
                    lambda: MictrackClientProtocol(self, remote_address), conn
                )
            except OSError as e:
                conn.close()
                logger.warning(f"Error setting up connection from {remote_address}: {e}")
                self.stats['connection_errors'] += 1
                self.emit_error(ConnectionErrorEvent(remote_address=remote_address, message=str(e)))

    async def stop(self):
        """Stop accepting, close the listening socket and all live connections"""
        with self._state_lock:
            if self._disposed:
                return
            self._disposed = True
            self._running = False
            accept_task, self._accept_task = self._accept_task, None
            sock, self._socket = self._socket, None

        logger.info("Shutting down Mictrack receiver...")

        if accept_task:
            accept_task.cancel()
            await asyncio.gather(accept_task, return_exceptions=True)
        if sock:
            sock.close()

        for conn in list(self.active_connections.values()):
            conn.close()

        self._stopped.set()
        logger.info("Mictrack receiver stopped")

    async def serve_forever(self):
        """Wait until stop() is called"""
        await self._stopped.wait()

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()

    def emit_beacon(self, event: BeaconReceivedEvent):
        self._dispatch(self._beacon_handlers, event)

    def emit_error(self, event: ErrorEvent):
        self._dispatch(self._error_handlers, event)

    def _dispatch(self, handlers: list, event):
        # Handlers must return quickly; coroutines are scheduled rather than awaited
        for handler in list(handlers):
            try:
                result = handler(event)
            except Exception:
                logger.exception(f"Event handler {handler!r} failed for {type(event).__name__}")
                continue

            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._handler_tasks.add(task)
                task.add_done_callback(self._handler_task_done)

    def _handler_task_done(self, task: asyncio.Task):
        self._handler_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Async event handler failed", exc_info=task.exception())

    def get_status(self) -> Dict[str, Any]:
        """Get detailed receiver status"""
        start_time = self.stats['start_time']
        uptime = datetime.now() - start_time if start_time else timedelta(0)

        return {
            'running': self._running,
            'uptime': str(uptime),
            'active_connections': len(self.active_connections),
            **{key: value for key, value in self.stats.items() if key != 'start_time'},
            'connections': [
                {
                    'remote_address': conn.remote_address,
                    'device_id': conn.handler.device_id,
                    'frames': conn.frame_count,
                    'pending_bytes': conn.buffer.pending,
                    'last_activity': datetime.fromtimestamp(conn.last_activity).isoformat(),
                }
                for conn in self.active_connections.values()
            ],
        }
