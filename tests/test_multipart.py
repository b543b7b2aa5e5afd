"""Tests for the streamed multipart producer."""

from __future__ import annotations

import asyncio
import io

import pytest

from mxhttp.core.client import Client
from mxhttp.core.multipart import BytePipe, MultipartBody
from mxhttp.core.request import Request
from mxhttp.exceptions import BuildError, TransportError
from mxhttp.models.values import File, Files, Values
from tests.helpers import ScriptedTransport, ok, url_for


class BrokenReader(io.RawIOBase):
    """A file object that fails after the first chunk."""

    def __init__(self):
        self.reads = 0

    def readable(self) -> bool:
        return True

    def read(self, size: int = -1) -> bytes:
        self.reads += 1
        if self.reads == 1:
            return b"partial"
        raise OSError("disk went away")


async def collect(body) -> bytes:
    data = bytearray()
    async for chunk in body:
        data.extend(chunk)
    return bytes(data)


class TestBytePipe:
    """Tests for BytePipe."""

    @pytest.mark.asyncio
    async def test_chunks_then_eof(self) -> None:
        pipe = BytePipe(maxsize=4)
        await pipe.write(b"a")
        await pipe.write(b"")
        await pipe.write(b"b")
        await pipe.close()
        assert await collect(pipe.chunks()) == b"ab"
        assert pipe.error is None

    @pytest.mark.asyncio
    async def test_error_reaches_reader(self) -> None:
        pipe = BytePipe()
        await pipe.write(b"a")
        await pipe.close(BuildError("boom"))
        with pytest.raises(BuildError, match="boom"):
            await collect(pipe.chunks())

    @pytest.mark.asyncio
    async def test_write_after_close(self) -> None:
        pipe = BytePipe()
        await pipe.close()
        with pytest.raises(BuildError):
            await pipe.write(b"late")


class TestMultipartBody:
    """Tests for MultipartBody validation and encoding."""

    def test_missing_file_is_rejected_up_front(self, tmp_path) -> None:
        with pytest.raises(BuildError, match="no such file"):
            MultipartBody(Files({"f": File(tmp_path / "nope.bin")}))

    def test_field_collision(self) -> None:
        with pytest.raises(BuildError, match="collision"):
            MultipartBody(Files({"a": File(b"x")}), Values({"a": "y"}))

    def test_non_file_part(self) -> None:
        with pytest.raises(BuildError, match="must be a File"):
            MultipartBody(Files({"a": b"raw"}))

    @pytest.mark.asyncio
    async def test_encoding(self, tmp_path) -> None:
        path = tmp_path / "notes.txt"
        path.write_text("from disk")
        body = MultipartBody(
            Files({"b": File(path), "a": File(b"in memory", filename="mem.bin", mime="application/x-test")}),
            Values({"title": "hello"}),
            boundary="BOUNDARY",
        )
        assert body.content_type == "multipart/form-data; boundary=BOUNDARY"
        data = await collect(body.open())
        assert body.error is None
        expected = (
            b"--BOUNDARY\r\n"
            b'Content-Disposition: form-data; name="a"; filename="mem.bin"\r\n'
            b"Content-Type: application/x-test\r\n\r\n"
            b"in memory\r\n"
            b"--BOUNDARY\r\n"
            b'Content-Disposition: form-data; name="b"; filename="notes.txt"\r\n'
            b"Content-Type: text/plain\r\n\r\n"
            b"from disk\r\n"
            b"--BOUNDARY\r\n"
            b'Content-Disposition: form-data; name="title"\r\n\r\n'
            b"hello\r\n"
            b"--BOUNDARY--\r\n"
        )
        assert data == expected

    @pytest.mark.asyncio
    async def test_single_use(self) -> None:
        body = MultipartBody(Files({"a": File(b"x")}))
        await collect(body.open())
        with pytest.raises(BuildError, match="cannot be replayed"):
            body.open()

    @pytest.mark.asyncio
    async def test_read_failure_lands_in_error_slot(self) -> None:
        body = MultipartBody(Files({"f": File(BrokenReader(), filename="x.bin")}))
        with pytest.raises(BuildError, match=r"can't read file of form \(f=@x.bin\)"):
            await collect(body.open())
        assert isinstance(body.error, BuildError)
        assert isinstance(body.error.cause, OSError)


class TestMultipartThroughClient:
    """Tests for multipart requests sent by the client."""

    @pytest.mark.asyncio
    async def test_upload(self, server, client, tmp_path) -> None:
        path = tmp_path / "cover.jpg"
        path.write_bytes(b"jpeg bytes")
        resp = await client.post(
            url_for(server, "/upload"),
            multipart=({"cover": File.open(path), "lyrics": File(b"la la", filename="l.txt")}, {"album": "A"}),
        )
        parts = await resp.ensure_status_ok().json()
        assert parts["cover"] == {"filename": "cover.jpg", "content_type": "image/jpeg", "content": "jpeg bytes"}
        assert parts["lyrics"]["content"] == "la la"
        assert parts["album"]["content"] == "A"
        assert parts["album"]["filename"] is None

    @pytest.mark.asyncio
    async def test_request_form_becomes_fields(self, server, client) -> None:
        req = Request("POST", url_for(server, "/upload"))
        req.form.set("k", "v")
        req.set_multipart({"f": File(b"data")})
        resp = await client.do(req)
        parts = await resp.json()
        assert parts["k"]["content"] == "v"
        assert parts["f"]["filename"] == File.DEFAULT_FILENAME

    @pytest.mark.asyncio
    async def test_producer_error_outranks_transport_error(self) -> None:
        transport = ScriptedTransport(ok())
        async with Client(transport=transport) as client:
            resp = await client.post(
                "http://example.com/upload",
                multipart={"f": File(BrokenReader(), filename="x.bin")},
                retry=3,
            )
        assert isinstance(resp.error, BuildError)
        assert not isinstance(resp.error, TransportError)
        assert resp.raw is None
        assert transport.calls == 1

    @pytest.mark.asyncio
    async def test_producer_error_reaches_caller_from_server(self, server, client) -> None:
        resp = await asyncio.wait_for(
            client.post(url_for(server, "/upload"), multipart={"f": File(BrokenReader(), filename="x.bin")}),
            timeout=10,
        )
        assert isinstance(resp.error, BuildError)
        assert not isinstance(resp.error, TransportError)
        assert "can't read file of form (f=@x.bin)" in str(resp.error)
        assert "disk went away" in str(resp.error)

    @pytest.mark.asyncio
    async def test_missing_file_fails_without_network(self, tmp_path) -> None:
        transport = ScriptedTransport(ok())
        async with Client(transport=transport) as client:
            resp = await client.post("http://example.com", multipart={"f": File(tmp_path / "gone")})
        assert isinstance(resp.error, BuildError)
        assert transport.calls == 0
