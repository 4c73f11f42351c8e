from __future__ import annotations

import json

import httpx
import pytest

from plansync.domain.error_codes import ErrorCode
from plansync.infra.http.audit_client import ApiError, AuditApiClient


def make_client(handler, **kwargs) -> AuditApiClient:
    kwargs.setdefault("retries", 2)
    kwargs.setdefault("retryBackoffSeconds", 0)
    return AuditApiClient(
        baseUrl="https://audit.local/api/",
        apiToken="secret-token",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


@pytest.mark.asyncio
async def test_retries_server_errors_then_succeeds():
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(503, text="busy")
        return httpx.Response(200, json={"$values": [{"auditId": 1}]})

    async with make_client(handler) as client:
        data = await client.getJson("/Audits")
        attempts = client.getRetryAttempts()

    assert data == {"$values": [{"auditId": 1}]}
    assert len(calls) == 2
    assert attempts == 1
    assert calls[0].headers["Authorization"] == "Bearer secret-token"
    assert calls[0].url.path == "/api/Audits"


@pytest.mark.asyncio
async def test_client_errors_are_not_retried():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(404, text="missing")

    async with make_client(handler) as client:
        with pytest.raises(ApiError) as excinfo:
            await client.getJson("/AuditPlan/7")

    assert len(calls) == 1
    assert excinfo.value.status_code == 404
    assert excinfo.value.body_snippet == "missing"
    assert excinfo.value.error_code == ErrorCode.NOT_FOUND


@pytest.mark.asyncio
async def test_retries_are_exhausted():
    def handler(request):
        return httpx.Response(500)

    async with make_client(handler, retries=1) as client:
        with pytest.raises(ApiError) as excinfo:
            await client.requestJson("POST", "/Audits", jsonBody={"title": "x"})
        attempts = client.getRetryAttempts()

    assert excinfo.value.code == "HTTP_500"
    assert excinfo.value.retryable is True
    assert attempts == 1


@pytest.mark.asyncio
async def test_network_error_is_reported_after_retries():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    async with make_client(handler, retries=1) as client:
        with pytest.raises(ApiError) as excinfo:
            await client.getJson("/Audits")

    assert excinfo.value.code == "NETWORK_ERROR"
    assert excinfo.value.status_code is None
    assert excinfo.value.error_code == ErrorCode.NETWORK_ERROR


@pytest.mark.asyncio
async def test_invalid_json_body():
    def handler(request):
        return httpx.Response(200, content=b"<html>oops</html>")

    async with make_client(handler) as client:
        with pytest.raises(ApiError) as excinfo:
            await client.getJson("/Audits")

    assert excinfo.value.error_code == ErrorCode.INVALID_JSON


@pytest.mark.asyncio
async def test_empty_body_is_none():
    def handler(request):
        return httpx.Response(204)

    async with make_client(handler) as client:
        assert await client.getJson("/Audits") is None
        assert await client.requestJson("DELETE", "/AuditTeam/7/u1") == (204, None)


@pytest.mark.asyncio
async def test_request_json_sends_body_and_returns_text_fallback():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(201, text="created")

    async with make_client(handler) as client:
        status, body = await client.requestJson("POST", "/AuditCriteriaMap", jsonBody={"auditId": 7})

    assert (status, body) == (201, "created")
    assert seen[0].method == "POST"
    assert json.loads(seen[0].content) == {"auditId": 7}
