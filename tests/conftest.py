"""Shared pytest fixtures for mxhttp tests.

Provides an in-process aiohttp test server with a handful of endpoints.
Test doubles live in tests.helpers.
"""

from __future__ import annotations

import asyncio
import gzip
from typing import AsyncIterator

import pytest_asyncio
from aiohttp import test_utils, web

import mxhttp.core.client as client_module
from mxhttp.core.client import Client

FLAKY_KEY = web.AppKey("flaky", dict)


async def echo(request: web.Request) -> web.Response:
    body = await request.read()
    return web.json_response(
        {
            "method": request.method,
            "path": request.path,
            "query": {k: request.query.getall(k) for k in request.query.keys()},
            "headers": dict(request.headers),
            "body": body.decode("utf-8", errors="replace"),
        }
    )


async def status(request: web.Request) -> web.Response:
    code = int(request.match_info["code"])
    return web.Response(status=code, text=f"status {code}")


async def gzipped(request: web.Request) -> web.Response:
    return web.Response(
        body=gzip.compress(b'{"compressed": true}'),
        headers={"Content-Encoding": "gzip", "Content-Type": "application/json"},
    )


async def gzipped_empty(request: web.Request) -> web.Response:
    return web.Response(body=b"", headers={"Content-Encoding": "gzip"})


async def gzipped_corrupt(request: web.Request) -> web.Response:
    return web.Response(body=b"definitely not gzip", headers={"Content-Encoding": "gzip"})


async def set_cookie(request: web.Request) -> web.Response:
    resp = web.Response(text="ok")
    resp.set_cookie("session", "abc123")
    return resp


async def flaky(request: web.Request) -> web.Response:
    counter = request.app[FLAKY_KEY]
    counter["calls"] += 1
    if counter["calls"] <= counter["failures"]:
        return web.Response(status=503, text="try again")
    return web.json_response({"calls": counter["calls"]})


async def upload(request: web.Request) -> web.Response:
    reader = await request.multipart()
    parts = {}
    async for part in reader:
        data = await part.read()
        parts[part.name] = {
            "filename": part.filename,
            "content_type": part.headers.get("Content-Type"),
            "content": data.decode("utf-8", errors="replace"),
        }
    return web.json_response(parts)


async def xml_doc(request: web.Request) -> web.Response:
    return web.Response(
        text='<?xml version="1.0"?><song id="7"><title>Hello</title><artist>Nobody</artist></song>',
        content_type="application/xml",
    )


async def gbk_text(request: web.Request) -> web.Response:
    return web.Response(
        body="你好".encode("gbk"),
        headers={"Content-Type": "text/plain; charset=gbk"},
    )


async def slow(request: web.Request) -> web.Response:
    await asyncio.sleep(2)
    return web.Response(text="late")


def create_app() -> web.Application:
    app = web.Application()
    app[FLAKY_KEY] = {"calls": 0, "failures": 2}
    app.router.add_route("*", "/echo", echo)
    app.router.add_get("/status/{code}", status)
    app.router.add_get("/gzip", gzipped)
    app.router.add_get("/gzip/empty", gzipped_empty)
    app.router.add_get("/gzip/corrupt", gzipped_corrupt)
    app.router.add_get("/cookies/set", set_cookie)
    app.router.add_get("/flaky", flaky)
    app.router.add_post("/upload", upload)
    app.router.add_get("/xml", xml_doc)
    app.router.add_get("/gbk", gbk_text)
    app.router.add_get("/slow", slow)
    return app


@pytest_asyncio.fixture
async def server() -> AsyncIterator[test_utils.TestServer]:
    """An aiohttp test server running the endpoints above."""
    srv = test_utils.TestServer(create_app())
    await srv.start_server()
    yield srv
    await srv.close()


@pytest_asyncio.fixture
async def client() -> AsyncIterator[Client]:
    """A client with default configuration, closed after the test."""
    c = Client()
    yield c
    await c.close()


@pytest_asyncio.fixture
async def reset_default_client() -> AsyncIterator[None]:
    """Leaves the process default client untouched by the test."""
    await client_module.close_default_client()
    yield
    await client_module.close_default_client()
