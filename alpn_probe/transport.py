"""Single-connection TLS transport that reports its lifecycle as ConnectionEvents."""

import abc
import asyncio
import errno
import logging
import socket
import ssl
from typing import Callable, Optional

from alpn_probe.config import Target, TransportConfig
from alpn_probe.events import ConnectionEvent, ConnectionState, PathStatus
from alpn_probe.metadata import SessionMetadata
from alpn_probe.tls_context import create_client_context

logger = logging.getLogger(__name__)

EventHandler = Callable[[ConnectionEvent], None]

# Conditions where a route may still appear; anything else fails at once.
TRANSIENT_ERRNOS = {errno.ENETUNREACH, errno.EHOSTUNREACH, errno.ENETDOWN}
TRANSIENT_GAI_ERRORS = {socket.EAI_AGAIN}
CLOSE_TIMEOUT = 5.0


def is_transient(error: OSError) -> bool:
    if isinstance(error, socket.gaierror):
        return error.errno in TRANSIENT_GAI_ERRORS
    return error.errno in TRANSIENT_ERRNOS


class Transport(abc.ABC):
    """What the session controller needs from a TLS-capable connection.

    Events go to the handler given to ``subscribe``, one at a time and in the
    order the transport observed them.  ``run`` blocks the caller on the event
    context until ``stop`` is called.
    """

    def __init__(self):
        self._handler: Optional[EventHandler] = None

    def subscribe(self, handler: EventHandler):
        self._handler = handler

    def _emit(self, event: ConnectionEvent):
        logger.debug("state -> %s", event.state.value)
        if self._handler is not None:
            self._handler(event)

    @abc.abstractmethod
    def start(self):
        """Begin connecting once ``run`` is processing events."""

    @abc.abstractmethod
    def run(self):
        """Process events until ``stop``."""

    @abc.abstractmethod
    def cancel(self):
        """Tear the connection down; a CANCELLED event follows."""

    @abc.abstractmethod
    def stop(self):
        """Release the connection and leave ``run`` without further events."""

    @abc.abstractmethod
    def negotiated_protocol(self) -> Optional[str]:
        pass

    @abc.abstractmethod
    def tls_version(self) -> Optional[str]:
        pass

    @abc.abstractmethod
    def cipher_suite(self) -> Optional[int]:
        pass

    @abc.abstractmethod
    def path_status(self) -> PathStatus:
        pass

    @abc.abstractmethod
    def peer_certificate(self) -> Optional[bytes]:
        pass


class AsyncioTransport(Transport):
    """Connects with asyncio streams and the stdlib ``ssl`` module on one event loop."""

    def __init__(self, target: Target, config: TransportConfig):
        super().__init__()
        self._target = target
        self._config = config
        self._ssl_ctx = create_client_context(config)
        self._loop = None
        self._stopped = None
        self._started = False
        self._cancelling = False
        self._state = None
        self._tasks = set()
        self._failure = None
        self._writer = None
        self._metadata: Optional[SessionMetadata] = None
        self._last_transient_error = None

    @property
    def ssl_context(self):
        return self._ssl_ctx

    def _emit(self, event: ConnectionEvent):
        if self._state is not None and self._state.terminal:
            logger.debug("Dropping %s after terminal state", event.state.value)
            return
        self._state = event.state
        super()._emit(event)

    def _spawn(self, coro):
        task = self._loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task):
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None and self._failure is None:
            # Errors raised by the event handler end the run and propagate.
            self._failure = exc
            self._stopped.set()

    def start(self):
        if self._started:
            raise RuntimeError("transport already started")
        self._started = True
        if self._loop is not None:
            self._spawn(self._drive())

    def run(self):
        asyncio.run(self._main())
        if self._failure is not None:
            raise self._failure

    async def _main(self):
        self._loop = asyncio.get_running_loop()
        self._stopped = asyncio.Event()
        if self._started:
            self._spawn(self._drive())
        try:
            await self._stopped.wait()
        finally:
            for task in list(self._tasks):
                task.cancel()
            await self._close_stream()

    async def _drive(self):
        self._emit(ConnectionEvent(ConnectionState.SETUP))
        timeout = self._config.tcp_connect_timeout
        try:
            await asyncio.wait_for(self._establish(), timeout=timeout)
        except asyncio.TimeoutError:
            error = self._last_transient_error or TimeoutError(
                f"Connection to {self._target} timed out after {timeout:g}s"
            )
            self._emit(ConnectionEvent.failed(error))
            return
        except OSError as e:
            self._emit(ConnectionEvent.failed(e))
            return

        ssl_object = self._writer.get_extra_info("ssl_object")
        self._metadata = SessionMetadata.from_ssl_object(ssl_object, self._ssl_ctx)
        logger.info(
            "Handshake complete with %s (%s, %s)",
            self._writer.get_extra_info("peername"),
            self._metadata.tls_version,
            self._metadata.negotiated_protocol,
        )
        self._emit(ConnectionEvent(ConnectionState.READY))

    async def _establish(self):
        while True:
            self._emit(ConnectionEvent(ConnectionState.PREPARING))
            try:
                await self._open()
                return
            except OSError as e:
                if not is_transient(e):
                    raise
                self._last_transient_error = e
                logger.info("No route to %s yet: %s", self._target, e)
                self._emit(ConnectionEvent.waiting(e))
            await asyncio.sleep(self._config.waiting_retry_interval)

    async def _resolve(self):
        return await self._loop.getaddrinfo(self._target.host, self._target.port, type=socket.SOCK_STREAM)

    async def _open(self):
        host, port = self._target.host, self._target.port
        infos = await self._resolve()
        last_error = None
        for family, _, _, _, sockaddr in infos:
            logger.debug("Trying %s", sockaddr[0])
            try:
                _, self._writer = await asyncio.open_connection(
                    sockaddr[0],
                    port,
                    family=family,
                    ssl=self._ssl_ctx,
                    server_hostname=host,
                )
                return
            except ssl.SSLError:
                raise
            except OSError as e:
                logger.info("Connect to %s failed: %s", sockaddr[0], e)
                last_error = e
        if last_error is None:
            raise OSError(f"No addresses found for {host}")
        raise last_error

    def cancel(self):
        if self._cancelling:
            return
        self._cancelling = True
        self._spawn(self._cancel())

    async def _cancel(self):
        for task in list(self._tasks):
            if task is not asyncio.current_task():
                task.cancel()
        await self._close_stream()
        self._emit(ConnectionEvent(ConnectionState.CANCELLED))

    async def _close_stream(self):
        writer, self._writer = self._writer, None
        if writer is None:
            return
        writer.close()
        try:
            await asyncio.wait_for(writer.wait_closed(), timeout=CLOSE_TIMEOUT)
        except (OSError, asyncio.TimeoutError) as e:
            logger.debug("Error while closing connection: %s", e)

    def stop(self):
        self._stopped.set()

    def _require_ready(self) -> SessionMetadata:
        if self._metadata is None:
            raise RuntimeError("connection metadata is only available once ready")
        return self._metadata

    def negotiated_protocol(self) -> Optional[str]:
        return self._require_ready().negotiated_protocol

    def tls_version(self) -> Optional[str]:
        return self._require_ready().tls_version

    def cipher_suite(self) -> Optional[int]:
        return self._require_ready().cipher_suite

    def peer_certificate(self) -> Optional[bytes]:
        return self._require_ready().peer_certificate

    def path_status(self) -> PathStatus:
        self._require_ready()
        writer = self._writer
        if writer is None or writer.is_closing() or writer.get_extra_info("peername") is None:
            return PathStatus.UNSATISFIED
        return PathStatus.SATISFIED
