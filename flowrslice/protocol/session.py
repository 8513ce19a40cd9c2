"""Persistent asyncio session speaking the engine's line-delimited JSON protocol."""

from __future__ import annotations

import asyncio
import contextlib
import enum
from typing import Any, Mapping, Sequence

from ..errors import ProtocolDecodeError, RequestTimeout, SessionClosed, TransportError
from ..logging import get_logger, preview
from .framing import ByteFrameBuffer
from .messages import HELLO_TYPE, decode_message, encode_message, engine_error, message_type
from .registry import PendingRequests

LOGGER = get_logger(__name__)

READ_SIZE = 64 * 1024
PROCESS_EXIT_TIMEOUT = 5.0


class SessionState(enum.Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSED = "closed"


class ProtocolSession:
    """Own one transport, its framing buffer and the pending-request registry.

    A background task is the only reader of the transport. ``request`` writes
    one message and suspends until the read loop delivers the matching
    response. Once closed, whether explicitly or through a transport failure,
    a session stays closed; callers replace it with a new one.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        *,
        name: str = "flowr",
        max_in_flight: int = 1,
        process: asyncio.subprocess.Process | None = None,
    ) -> None:
        self.name = name
        self.state = SessionState.CONNECTING
        self.server_info: dict[str, Any] | None = None
        self._reader = reader
        self._writer = writer
        self._process = process
        self._frames = ByteFrameBuffer()
        self._pending = PendingRequests(max_in_flight=max_in_flight)
        self._reader_task: asyncio.Task | None = None
        self._stderr_task: asyncio.Task | None = None

    @classmethod
    async def open_connection(
        cls,
        host: str,
        port: int,
        *,
        connect_timeout: float | None = None,
        max_in_flight: int = 1,
    ) -> "ProtocolSession":
        name = f"{host}:{port}"
        LOGGER.info("Connecting to flowR server at %s", name)
        try:
            reader, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=connect_timeout)
        except asyncio.TimeoutError as exc:
            raise TransportError(f"timed out connecting to {name}") from exc
        except OSError as exc:
            raise TransportError(f"failed to connect to {name}: {exc}") from exc
        session = cls(reader, writer, name=name, max_in_flight=max_in_flight)
        session.start()
        LOGGER.info("Connected to flowR server at %s", name)
        return session

    @classmethod
    async def open_process(
        cls,
        command: Sequence[str],
        *,
        cwd: str | None = None,
        max_in_flight: int = 1,
    ) -> "ProtocolSession":
        """Spawn a local engine that speaks the protocol on stdin/stdout."""
        if not command:
            raise ValueError("an engine command is required to spawn a local engine")
        LOGGER.info("Starting local flowR engine: %s", " ".join(command))
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                cwd=cwd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise TransportError(f"failed to start {command[0]}: {exc}") from exc
        assert process.stdout and process.stdin
        session = cls(process.stdout, process.stdin, name=command[0], max_in_flight=max_in_flight, process=process)
        session.start()
        return session

    def start(self) -> None:
        if self.state is not SessionState.CONNECTING:
            raise SessionClosed(f"session {self.name} cannot be started while {self.state.value}")
        self._reader_task = asyncio.create_task(self._read_loop(), name=f"flowrslice-read-{self.name}")
        if self._process is not None and self._process.stderr is not None:
            self._stderr_task = asyncio.create_task(self._drain_stderr(self._process.stderr))
        self.state = SessionState.CONNECTED

    @property
    def closed(self) -> bool:
        return self.state is SessionState.CLOSED

    @property
    def in_flight(self) -> int:
        return len(self._pending)

    async def __aenter__(self) -> "ProtocolSession":
        return self

    async def __aexit__(self, *_exc_info: object) -> None:
        await self.close()

    async def request(self, payload: Mapping[str, Any], *, timeout: float | None = None) -> dict[str, Any]:
        """Send ``payload`` and wait for the response correlated with its ``id``."""
        if self.state is not SessionState.CONNECTED:
            raise SessionClosed(f"session {self.name} is {self.state.value}")
        raw_id = payload.get("id")
        if raw_id is None:
            raise ValueError("requests must carry an 'id'")
        request_id = str(raw_id)
        future = self._pending.register(request_id)
        data = encode_message(payload)
        LOGGER.debug("Sending: %s", preview(data.decode("utf-8").rstrip("\n")))
        try:
            self._writer.write(data)
            await self._writer.drain()
        except OSError as exc:
            self._pending.discard(request_id)
            error = TransportError(f"failed to send request {request_id} to {self.name}: {exc}")
            await self._shutdown(error)
            raise error from exc
        try:
            if timeout is None:
                return await future
            return await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError as exc:
            expired = self._pending.discard(request_id)
            if expired is not None:
                LOGGER.warning("Request %s to %s timed out after %.2fs", request_id, self.name, expired.age)
            raise RequestTimeout(request_id, timeout or 0.0) from exc
        finally:
            self._pending.discard(request_id)

    async def close(self) -> None:
        await self._shutdown(None)

    async def _shutdown(self, cause: BaseException | None) -> None:
        if self.state is SessionState.CLOSED:
            return
        self.state = SessionState.CLOSED
        reason = f"session {self.name} closed"
        if cause is not None:
            reason = f"{reason}: {cause}"
        error = SessionClosed(reason)
        error.__cause__ = cause
        failed = self._pending.fail_all(error)
        if failed:
            LOGGER.warning("Failed %d pending request(s) while closing %s", failed, self.name)

        current = asyncio.current_task()
        for task in (self._reader_task, self._stderr_task):
            if task is None or task is current or task.done():
                continue
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        self._writer.close()
        try:
            await self._writer.wait_closed()
        except OSError as exc:
            LOGGER.debug("Error while closing transport of %s: %s", self.name, exc)

        if self._process is not None and self._process.returncode is None:
            await self._stop_process(self._process)
        LOGGER.info("Closed session %s", self.name)

    async def _stop_process(self, process: asyncio.subprocess.Process) -> None:
        try:
            process.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(process.wait(), timeout=PROCESS_EXIT_TIMEOUT)
        except asyncio.TimeoutError:
            LOGGER.warning("Local engine did not exit in %ss; killing it", PROCESS_EXIT_TIMEOUT)
            process.kill()
            await process.wait()

    async def _read_loop(self) -> None:
        cause: BaseException | None = None
        try:
            while True:
                data = await self._reader.read(READ_SIZE)
                if not data:
                    cause = TransportError(f"{self.name} closed the connection")
                    break
                fatal = None
                for text in self._frames.feed(data):
                    fatal = self._dispatch(text) or fatal
                if fatal is not None:
                    cause = fatal
                    break
        except OSError as exc:
            LOGGER.error("Reading from %s failed: %s", self.name, exc)
            cause = TransportError(f"reading from {self.name} failed: {exc}")
        except Exception as exc:
            LOGGER.exception("Reader of %s stopped unexpectedly", self.name)
            cause = exc
        finally:
            if self._frames.pending:
                LOGGER.warning("Discarding %d unterminated characters from %s", len(self._frames.pending), self.name)
            await self._shutdown(cause)

    def _dispatch(self, text: str) -> BaseException | None:
        """Route one framed message. Returns an error that must end the session."""
        LOGGER.debug("Received: %s", preview(text))
        try:
            message = decode_message(text)
        except ProtocolDecodeError as exc:
            LOGGER.error("Undecodable message from %s: %s", self.name, preview(text))
            self._pending.fail_one(exc)
            return None
        if message_type(message) == HELLO_TYPE:
            self.server_info = message
            LOGGER.info("flowR server greeting: %s", preview(str(message.get("versions", message))))
            return None
        error = engine_error(message)
        if error is not None:
            LOGGER.error("flowR reported an error for request %s: %s", error.request_id, error.reason)
            self._pending.fail(message, error)
            return error if error.fatal else None
        self._pending.resolve(message)
        return None

    async def _drain_stderr(self, stream: asyncio.StreamReader) -> None:
        async for line in stream:
            LOGGER.debug("%s stderr: %s", self.name, line.decode("utf-8", errors="replace").rstrip())


__all__ = ["ProtocolSession", "SessionState"]
