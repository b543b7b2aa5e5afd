"""
Streams multipart/form-data payloads from a background producer.

The producer task encodes file parts and form fields into a bounded pipe
while the transport reads from the other end, so large files are never held
in memory. A producer failure is parked in the pipe's error slot and checked
by the client once the exchange settles.
"""

import asyncio
import logging
import mimetypes
import uuid
from typing import AsyncIterator, Optional

import aiofiles

from mxhttp.core.context import Context
from mxhttp.exceptions import BuildError, MxHttpError
from mxhttp.models.values import File, Files, Values

log = logging.getLogger(__name__)

CHUNK_SIZE = 65536  # 64 KB
_EOF = object()


def _escape_quotes(s: str) -> str:
    return s.replace("\\", "\\\\").replace('"', '\\"')


class BytePipe:
    """A bounded single-producer, single-consumer byte pipe with an error slot."""

    def __init__(self, maxsize: int = 16):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._error: Optional[BaseException] = None
        self._closed = False

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    @property
    def closed(self) -> bool:
        return self._closed

    async def write(self, chunk: bytes) -> None:
        if self._closed:
            raise BuildError("write to closed pipe", op="BytePipe.write")
        if chunk:
            await self._queue.put(chunk)

    async def close(self, error: Optional[BaseException] = None) -> None:
        """Closes the write end. A non-None error is re-raised to the reader."""
        if self._closed:
            return
        self._closed = True
        self._error = error
        await self._queue.put(_EOF)

    async def chunks(self) -> AsyncIterator[bytes]:
        """Yields chunks until the writer closes the pipe."""
        while True:
            chunk = await self._queue.get()
            if chunk is _EOF:
                break
            yield chunk
        if self._error is not None:
            raise self._error


class MultipartBody:
    """
    A multipart/form-data body made of file parts followed by form fields.

    Bodies are single-use: once opened, the producer consumes the file
    sources, so a request carrying one is never retried.
    """

    def __init__(
        self,
        files: Files,
        form: Optional[Values] = None,
        boundary: Optional[str] = None,
    ):
        self.files = Files(files)
        self.form = Values(form or {})
        self.boundary = boundary or uuid.uuid4().hex
        self._pipe: Optional[BytePipe] = None
        self._task: Optional[asyncio.Task] = None
        self.validate()

    @property
    def content_type(self) -> str:
        return f"multipart/form-data; boundary={self.boundary}"

    @property
    def opened(self) -> bool:
        return self._pipe is not None

    @property
    def error(self) -> Optional[BaseException]:
        """The producer failure, if any."""
        return self._pipe.error if self._pipe else None

    def validate(self) -> None:
        """
        Checks the parts before anything is sent.

        Raises:
            BuildError: For a missing file or a field used by both a file
                and a form value.
        """
        for name, file in self.files.items():
            if not isinstance(file, File):
                raise BuildError(
                    f"field '{name}' must be a File, got {type(file).__name__}",
                    op="Request.set_multipart",
                )
            if file.is_path:
                File.open(file.body)
        collisions = sorted(set(self.files) & set(self.form))
        if collisions:
            raise BuildError(
                f"field name collision between files and form: {', '.join(collisions)}",
                op="Request.set_multipart",
            )

    def open(self, context: Optional[Context] = None) -> AsyncIterator[bytes]:
        """
        Starts the producer and returns the reading end of the pipe.

        Must be called from within a running event loop.
        """
        if self._pipe is not None:
            raise BuildError(
                "multipart body already consumed and cannot be replayed",
                op="MultipartBody.open",
            )
        self._pipe = BytePipe()
        self._task = asyncio.get_running_loop().create_task(
            self._produce(self._pipe, context)
        )
        return self._pipe.chunks()

    async def aclose(self) -> None:
        """Stops the producer if it is still running."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

    def _part_header(self, name: str, filename: Optional[str], content_type: Optional[str]) -> bytes:
        disposition = f'form-data; name="{_escape_quotes(name)}"'
        if filename is not None:
            disposition += f'; filename="{_escape_quotes(filename)}"'
        lines = [f"--{self.boundary}", f"Content-Disposition: {disposition}"]
        if content_type:
            lines.append(f"Content-Type: {content_type}")
        return ("\r\n".join(lines) + "\r\n\r\n").encode("utf-8")

    async def _produce(self, pipe: BytePipe, context: Optional[Context]) -> None:
        name, filename = "", ""
        try:
            for name in sorted(self.files):
                file = self.files[name]
                filename = file.filename
                mime = (
                    file.mime
                    or mimetypes.guess_type(filename)[0]
                    or "application/octet-stream"
                )
                await pipe.write(self._part_header(name, filename, mime))
                async for chunk in self._read_file(file):
                    if context is not None:
                        context.check()
                    await pipe.write(chunk)
                await pipe.write(b"\r\n")

            for key, value in self.form.items_sorted():
                await pipe.write(self._part_header(key, None, None))
                await pipe.write(value.encode("utf-8") + b"\r\n")

            await pipe.write(f"--{self.boundary}--\r\n".encode("utf-8"))
        except MxHttpError as e:
            await pipe.close(e)
            return
        except Exception as e:
            log.debug(f"Multipart producer failed on '{name}' ({filename}): {e}")
            error = BuildError(
                f"can't read file of form ({name}=@{filename}): {e}",
                op="Request.set_multipart",
                cause=e,
            )
            await pipe.close(error)
            return
        await pipe.close()

    async def _read_file(self, file: File) -> AsyncIterator[bytes]:
        if file.is_path:
            async with aiofiles.open(file.body, "rb") as f:
                while chunk := await f.read(CHUNK_SIZE):
                    yield chunk
        elif isinstance(file.body, (bytes, bytearray, memoryview)):
            data = bytes(file.body)
            for offset in range(0, len(data), CHUNK_SIZE):
                yield data[offset : offset + CHUNK_SIZE]
        else:
            while True:
                chunk = file.body.read(CHUNK_SIZE)
                if asyncio.iscoroutine(chunk):
                    chunk = await chunk
                if not chunk:
                    break
                yield chunk
