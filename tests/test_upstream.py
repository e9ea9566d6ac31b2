"""
Upstream Client and Process Model Tests
=======================================
"""

import httpx
import pytest

from jpid_gateway.config import UpstreamConfig
from jpid_gateway.errors import InvalidStartTypeError, UpstreamError
from jpid_gateway.models.process import StartType, UpstreamTarget, path_segment
from jpid_gateway.upstream import UpstreamClient


class TestStartType:

    @pytest.mark.parametrize("value, expected", [("run", StartType.RUN), ("script", StartType.SCRIPT)])
    def test_parse(self, value, expected):
        assert StartType.parse(value) is expected

    @pytest.mark.parametrize("value", ["docker", "RUN", ""])
    def test_parse_rejects(self, value):
        with pytest.raises(InvalidStartTypeError) as exc_info:
            StartType.parse(value)
        assert exc_info.value.status_code == 400


class TestPathSegment:

    @pytest.mark.parametrize("value, expected", [
        ("42", "42"),
        ("a?x=1", "a%3Fx%3D1"),
        ("a/b", "a%2Fb"),
        ("a#b", "a%23b"),
        ("..", "%2E%2E"),
        (".", "%2E"),
        ("v1.2", "v1.2"),
    ])
    def test_escapes_one_segment(self, value, expected):
        assert path_segment(value) == expected


class TestUpstreamTarget:

    def test_run_url_and_params(self):
        target = UpstreamTarget("http://job.local", "42", StartType.RUN, True, "/jpid")
        assert target.url == "http://job.local/jpid/start/run/42"
        assert target.params == {"background": "true"}

    def test_script_has_no_params(self):
        target = UpstreamTarget("http://job.local", "42", StartType.SCRIPT, True)
        assert target.url == "http://job.local/start/script/42"
        assert target.params == {}

    def test_process_id_escaped(self):
        target = UpstreamTarget("http://job.local", "..", StartType.SCRIPT, api_prefix="/jpid")
        assert target.url == "http://job.local/jpid/start/script/%2E%2E"


class TestUpstreamClient:

    @pytest.mark.asyncio
    async def test_endpoint_and_target(self, upstream, record):
        assert upstream.endpoint(record, "/stop/42") == "http://job.local/jpid/stop/42"

        target = upstream.start_target(record, "42", StartType.RUN)
        assert target.url == "http://job.local/jpid/start/run/42"
        assert target.params == {"background": "false"}

    @pytest.mark.asyncio
    async def test_bare_prefix(self, job_server, record):
        client = UpstreamClient.create(UpstreamConfig(api_prefix=""), transport=job_server.transport)
        try:
            assert client.start_target(record, "42", StartType.SCRIPT).url == (
                "http://job.local/start/script/42"
            )
        finally:
            await client.aclose()

    @pytest.mark.asyncio
    async def test_call_returns_any_status(self, upstream, job_server, record):
        job_server.json("POST", "/jpid/stop/42", {"code": 1}, status=500)

        response = await upstream.call(record, "POST", "/stop/42")

        assert response.status_code == 500
        assert response.json() == {"code": 1}

    @pytest.mark.asyncio
    async def test_call_transport_error(self, upstream, job_server, record):
        job_server.fail("GET", "/jpid", httpx.ConnectTimeout("timed out"))

        with pytest.raises(UpstreamError) as exc_info:
            await upstream.call(record, "GET", "")

        assert exc_info.value.status_code == 502
        assert exc_info.value.details == "timed out"

    @pytest.mark.asyncio
    async def test_stream_error_body_truncated(self, upstream, job_server, record):
        job_server.on("GET", "/jpid/start/run/42", lambda r: httpx.Response(500, text="x" * 5000))

        with pytest.raises(UpstreamError) as exc_info:
            await upstream.open_stream(upstream.start_target(record, "42", StartType.RUN))

        assert len(exc_info.value.details) == 2048
        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_direct_calls_have_their_own_pool(self, job_server, record):
        config = UpstreamConfig(max_connections=1, max_direct_connections=1)
        client = UpstreamClient.create(config, transport=job_server.transport)
        job_server.stream("/jpid/start/run/42", [b"data: 1\n\n"], hang=True)
        job_server.json("POST", "/jpid/stop/42", {"code": 0})
        try:
            stream = await client.open_stream(client.start_target(record, "42", StartType.RUN))
            response = await client.call(record, "POST", "/stop/42")

            assert response.status_code == 200
            assert client._client is not client._stream_client
            await stream.aclose()
        finally:
            await client.aclose()
