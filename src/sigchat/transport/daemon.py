"""
Line transport to the messaging daemon.

The daemon writes one JSON envelope per line and accepts one JSON send
request per line. It is reached either as a child process (stdin/stdout) or
over a TCP or unix socket.
"""

import asyncio
import contextlib
import logging
from typing import Optional, Sequence

from sigchat.errors import TransportError
from sigchat.models.envelope import SendRequest
from sigchat.transport.envelope import encode_send

logger = logging.getLogger(__name__)

STREAM_LIMIT = 16 * 1024 * 1024


class LineTransport:
    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: Optional[asyncio.StreamWriter],
        process: Optional[asyncio.subprocess.Process] = None,
    ):
        self._reader = reader
        self._writer = writer
        self._process = process
        self._write_lock = asyncio.Lock()
        self._closed = False

    @classmethod
    async def spawn(cls, command: Sequence[str], limit: int = STREAM_LIMIT) -> "LineTransport":
        """Start the daemon as a child process and talk over its stdio."""
        if not command:
            raise TransportError("Empty daemon command")
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                limit=limit,
            )
        except OSError as e:
            raise TransportError(f"Failed to start daemon {command[0]!r}: {e}")
        logger.info(f"Started daemon pid={process.pid}: {' '.join(command)}")
        return cls(process.stdout, process.stdin, process)  # type: ignore[arg-type]

    @classmethod
    async def open_tcp(cls, host: str, port: int, limit: int = STREAM_LIMIT) -> "LineTransport":
        try:
            reader, writer = await asyncio.open_connection(host, port, limit=limit)
        except OSError as e:
            raise TransportError(f"Failed to connect to daemon at {host}:{port}: {e}")
        return cls(reader, writer)

    @classmethod
    async def open_unix(cls, path: str, limit: int = STREAM_LIMIT) -> "LineTransport":
        try:
            reader, writer = await asyncio.open_unix_connection(path, limit=limit)
        except OSError as e:
            raise TransportError(f"Failed to connect to daemon socket {path}: {e}")
        return cls(reader, writer)

    @property
    def closed(self) -> bool:
        return self._closed

    async def read_line(self) -> Optional[bytes]:
        """Next line without its newline, or None when the stream has ended."""
        if self._closed:
            return None
        try:
            line = await self._reader.readline()
        except (ConnectionError, OSError) as e:
            raise TransportError(f"Daemon stream failed: {e}")
        except ValueError as e:
            raise TransportError(f"Daemon line exceeds stream limit: {e}")
        if not line:
            return None
        return line.rstrip(b"\r\n")

    async def send(self, request: SendRequest) -> None:
        if self._closed or self._writer is None:
            raise TransportError("Daemon transport is closed", contact=request.recipient)
        data = encode_send(request)
        async with self._write_lock:
            try:
                self._writer.write(data)
                await self._writer.drain()
            except (ConnectionError, OSError) as e:
                raise TransportError(f"Write to daemon failed: {e}", contact=request.recipient)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._writer is not None:
            self._writer.close()
            with contextlib.suppress(ConnectionError, OSError):
                await self._writer.wait_closed()
        if self._process is not None and self._process.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                self._process.terminate()
            try:
                await asyncio.wait_for(self._process.wait(), timeout=5.0)
            except asyncio.TimeoutError:
                logger.warning(f"Daemon pid={self._process.pid} did not exit, killing")
                self._process.kill()
                await self._process.wait()
