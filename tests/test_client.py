"""End-to-end tests for the client against a local aiohttp server."""

from __future__ import annotations

import json

import pytest

import mxhttp
from mxhttp.core.client import Client, get_default_client, init_default_client
from mxhttp.core.context import Context
from mxhttp.core.hooks import (
    ensure_status_2xx,
    logging_hooks,
    set_bearer_token_default,
    set_form_default,
    set_query_default,
    set_user_agent_default,
)
from mxhttp.exceptions import (
    CancellationError,
    ConfigurationError,
    DecodeError,
    HookError,
    InvalidURL,
    NoCookie,
    StatusError,
    TransportError,
)
from mxhttp.models.config import DEFAULT_USER_AGENT
from mxhttp.utils.structured_logger import create_structured_logger
from tests.helpers import ScriptedTransport, ok, url_for


class TestRequests:
    """Tests for plain request delivery."""

    @pytest.mark.asyncio
    async def test_get_with_options(self, server, client) -> None:
        resp = await client.get(
            url_for(server, "/echo?x=1"),
            query={"y": [2, 3]},
            headers={"X-Trace": "t1"},
        )
        assert resp.ok
        echoed = await resp.json()
        assert echoed["method"] == "GET"
        assert echoed["query"] == {"x": ["1"], "y": ["2", "3"]}
        assert echoed["headers"]["X-Trace"] == "t1"
        assert echoed["headers"]["User-Agent"] == DEFAULT_USER_AGENT

    @pytest.mark.asyncio
    async def test_post_json(self, server, client) -> None:
        resp = await client.post(url_for(server, "/echo"), json={"tag": "<b>"})
        echoed = await resp.json()
        assert echoed["headers"]["Content-Type"] == "application/json"
        assert json.loads(echoed["body"]) == {"tag": "<b>"}

    @pytest.mark.asyncio
    async def test_post_form(self, server, client) -> None:
        resp = await client.post(url_for(server, "/echo"), form={"b": "2", "a": "1"})
        echoed = await resp.json()
        assert echoed["headers"]["Content-Type"] == "application/x-www-form-urlencoded"
        assert echoed["body"] == "a=1&b=2"

    @pytest.mark.asyncio
    async def test_head(self, server, client) -> None:
        resp = await client.head(url_for(server, "/echo"))
        assert resp.status == 200
        assert await resp.content() == b""

    @pytest.mark.asyncio
    async def test_client_headers(self, server) -> None:
        async with Client(headers={"X-Client": "c"}, user_agent="custom/1") as client:
            echoed = await (await client.get(url_for(server, "/echo"), headers={"X-Req": "r"})).json()
        assert echoed["headers"]["X-Client"] == "c"
        assert echoed["headers"]["X-Req"] == "r"
        assert echoed["headers"]["User-Agent"] == "custom/1"

    @pytest.mark.asyncio
    async def test_invalid_url_is_reported(self, client) -> None:
        resp = await client.get("ftp://example.com/file")
        assert isinstance(resp.error, InvalidURL)
        assert resp.raw is None

    @pytest.mark.asyncio
    async def test_unknown_option_is_reported(self, client) -> None:
        resp = await client.get("http://example.com", bogus=True)
        assert "unknown request option" in str(resp.error)

    @pytest.mark.asyncio
    async def test_connection_refused(self, server, client) -> None:
        url = url_for(server, "/echo")
        await server.close()
        resp = await client.get(url)
        assert isinstance(resp.error, TransportError)
        with pytest.raises(TransportError):
            await resp.text()


class TestDecoding:
    """Tests for bodies decoded from real responses."""

    @pytest.mark.asyncio
    async def test_gzip(self, server, client) -> None:
        resp = await client.get(url_for(server, "/gzip"))
        assert await resp.json() == {"compressed": True}

    @pytest.mark.asyncio
    async def test_empty_gzip(self, server, client) -> None:
        resp = await client.get(url_for(server, "/gzip/empty"))
        assert await resp.content() == b""

    @pytest.mark.asyncio
    async def test_corrupt_gzip(self, server, client) -> None:
        resp = await client.get(url_for(server, "/gzip/corrupt"))
        assert resp.error is None
        with pytest.raises(DecodeError):
            await resp.content()

    @pytest.mark.asyncio
    async def test_xml(self, server, client) -> None:
        root = await (await client.get(url_for(server, "/xml"))).xml()
        assert root.get("id") == "7"
        assert root.findtext("title") == "Hello"

    @pytest.mark.asyncio
    async def test_charset_from_header(self, server, client) -> None:
        assert await (await client.get(url_for(server, "/gbk"))).text() == "你好"

    @pytest.mark.asyncio
    async def test_save(self, server, client, tmp_path) -> None:
        resp = await client.get(url_for(server, "/status/200"))
        await resp.save(tmp_path / "body.txt")
        assert (tmp_path / "body.txt").read_text() == "status 200"


class TestHooks:
    """Tests for interceptor chains."""

    @pytest.mark.asyncio
    async def test_client_defaults(self, server) -> None:
        hooks = [set_user_agent_default("X"), set_query_default({"k": "v"}), set_bearer_token_default("t")]
        async with Client(before_request=hooks) as client:
            echoed = await (await client.get(url_for(server, "/echo"), query={"a": 1})).json()
            assert echoed["headers"]["User-Agent"] == "X"
            assert echoed["headers"]["Authorization"] == "Bearer t"
            assert echoed["query"] == {"a": ["1"], "k": ["v"]}

            echoed = await (await client.get(url_for(server, "/echo"), user_agent="Y")).json()
            assert echoed["headers"]["User-Agent"] == "Y"

    @pytest.mark.asyncio
    async def test_form_default(self, server) -> None:
        async with Client(before_request=[set_form_default({"lang": "en"})]) as client:
            echoed = await (await client.post(url_for(server, "/echo"))).json()
        assert echoed["body"] == "lang=en"

    @pytest.mark.asyncio
    async def test_ensure_status_hook(self, server) -> None:
        async with Client(after_response=[ensure_status_2xx()]) as client:
            resp = await client.get(url_for(server, "/status/500"))
            assert isinstance(resp.error, StatusError)
            assert resp.error.actual == 500
            assert resp.raw is not None
            with pytest.raises(StatusError):
                await resp.text()

    @pytest.mark.asyncio
    async def test_failing_before_hook_skips_network(self) -> None:
        def broken(req) -> None:
            raise ValueError("nope")

        transport = ScriptedTransport(ok())
        async with Client(transport=transport, before_request=[broken]) as client:
            resp = await client.get("http://example.com")
        assert isinstance(resp.error, HookError)
        assert isinstance(resp.error.cause, ValueError)
        assert transport.calls == 0

    @pytest.mark.asyncio
    async def test_after_hooks_stop_at_first_failure(self) -> None:
        seen = []

        async def first(resp) -> None:
            seen.append("first")
            raise ValueError("rejected")

        def second(resp) -> None:
            seen.append("second")

        async with Client(transport=ScriptedTransport(ok()), after_response=[first, second]) as client:
            resp = await client.get("http://example.com")
        assert seen == ["first"]
        assert isinstance(resp.error, HookError)
        assert resp.status == 200

    @pytest.mark.asyncio
    async def test_after_hooks_skipped_on_error(self) -> None:
        seen = []
        transport = ScriptedTransport(TransportError("down"))
        async with Client(transport=transport, after_response=[seen.append]) as client:
            resp = await client.get("http://example.com")
        assert seen == []
        assert isinstance(resp.error, TransportError)

    @pytest.mark.asyncio
    async def test_logging_hooks(self, server, tmp_path) -> None:
        base, http_logger = create_structured_logger(tmp_path, enable_json=True)
        before, after = logging_hooks(http_logger)
        async with Client(before_request=[before], after_response=[after]) as client:
            await client.get(url_for(server, "/echo"), bearer_token="secret")
            await client.get(url_for(server, "/status/404"))
        base.close()

        entries = [json.loads(line) for line in base.json_log_path.read_text().splitlines()]
        assert [e["event"] for e in entries] == [
            "request_started",
            "request_completed",
            "request_started",
            "request_failed",
        ]
        assert entries[0]["headers"]["Authorization"] == "<redacted>"
        assert entries[1]["status"] == 200
        assert entries[3]["status"] == 404


class TestCancellation:
    """Tests for deadlines and explicit cancellation."""

    @pytest.mark.asyncio
    async def test_timeout(self, server, client) -> None:
        resp = await client.get(url_for(server, "/slow"), timeout=0.1)
        assert isinstance(resp.error, CancellationError)
        assert resp.raw is None

    @pytest.mark.asyncio
    async def test_cancelled_context(self, server, client) -> None:
        ctx = Context()
        ctx.cancel()
        resp = await client.get(url_for(server, "/echo"), context=ctx)
        assert isinstance(resp.error, CancellationError)


class TestCookies:
    """Tests for the client cookie jar."""

    @pytest.mark.asyncio
    async def test_jar_round_trip(self, server, client) -> None:
        resp = await client.get(url_for(server, "/cookies/set"))
        assert resp.cookie("session").value == "abc123"

        morsel = await client.filter_cookie(url_for(server, "/echo"), "session")
        assert morsel.value == "abc123"

        echoed = await (await client.get(url_for(server, "/echo"))).json()
        assert "session=abc123" in echoed["headers"]["Cookie"]

    @pytest.mark.asyncio
    async def test_set_cookies(self, server, client) -> None:
        await client.set_cookies(url_for(server, "/"), {"theme": "dark"})
        echoed = await (await client.get(url_for(server, "/echo"))).json()
        assert echoed["headers"]["Cookie"] == "theme=dark"
        with pytest.raises(NoCookie):
            await client.filter_cookie(url_for(server, "/echo"), "missing")

    @pytest.mark.asyncio
    async def test_response_without_cookies(self, server, client) -> None:
        resp = await client.get(url_for(server, "/echo"))
        with pytest.raises(NoCookie):
            resp.cookies()

    @pytest.mark.asyncio
    async def test_disabled_jar(self) -> None:
        async with Client(use_cookies=False) as client:
            with pytest.raises(ConfigurationError, match="disabled"):
                await client.filter_cookies("http://example.com")


class TestConfiguration:
    """Tests for client construction and the default client."""

    @pytest.mark.parametrize("overrides", [{"timeout": -1}, {"bogus": 1}, {"retry_min_wait": 5, "retry_max_wait": 1}])
    def test_invalid_overrides(self, overrides: dict) -> None:
        with pytest.raises(ConfigurationError, match="invalid client options"):
            Client(**overrides)

    @pytest.mark.asyncio
    async def test_init_after_use(self, reset_default_client) -> None:
        client = get_default_client()
        assert get_default_client() is client
        with pytest.raises(ConfigurationError):
            init_default_client(timeout=5)

    @pytest.mark.asyncio
    async def test_init_before_use(self, reset_default_client) -> None:
        client = init_default_client(timeout=5)
        assert get_default_client() is client
        assert client.config.timeout == 5

    @pytest.mark.asyncio
    async def test_module_helpers(self, server, client) -> None:
        resp = await mxhttp.post(url_for(server, "/echo"), client=client, text="hi")
        echoed = await resp.json()
        assert echoed["method"] == "POST"
        assert echoed["body"] == "hi"

    @pytest.mark.asyncio
    async def test_module_helpers_use_default_client(self, server, reset_default_client) -> None:
        resp = await mxhttp.get(url_for(server, "/status/204"))
        assert resp.status == 204
        await resp.close()
