from __future__ import annotations

import asyncio
import logging
import ssl
from typing import Any

import httpx

from plansync.domain.exceptions import TransportError
from plansync.infra.logging.setup import logEvent


class ApiError(TransportError):
    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        body_snippet: str | None = None,
        retryable: bool = False,
        details: dict | None = None,
        code: str | None = None,
    ):
        """
        Назначение:
            Ошибка HTTP/API уровня AuditApiClient.
        Контракт:
            - code: HTTP_<status>, NETWORK_ERROR, INVALID_JSON;
            - status_code/body_snippet используются для диагностики.
        """
        super().__init__(
            message=message,
            status_code=status_code,
            code=code,
            retryable=retryable,
            details=details or {},
        )
        self.body_snippet = body_snippet


class AuditApiClient:
    """
    Назначение/ответственность:
        Асинхронный клиент REST API аудита с простой политикой ретраев.
    Контракт:
        - повтор при 429/5xx и сетевых ошибках, не более retries раз,
          задержка retryBackoffSeconds * 2**attempt;
        - прочие статусы вне 2xx → ApiError без повторов;
        - счётчик retry_attempts доступен для отчёта.
    """

    def __init__(
        self,
        baseUrl: str,
        apiToken: str | None = None,
        timeoutSeconds: float = 20.0,
        tlsSkipVerify: bool = False,
        caFile: str | None = None,
        retries: int = 3,
        retryBackoffSeconds: float = 0.5,
        transport: httpx.AsyncBaseTransport | None = None,
        logger: logging.Logger | None = None,
        runId: str = "-",
    ):
        verify: bool | ssl.SSLContext = True
        if tlsSkipVerify:
            verify = False
        elif caFile:
            verify = ssl.create_default_context(cafile=caFile)

        self.baseUrl = baseUrl.rstrip("/")
        self.apiToken = apiToken
        self.retries = retries
        self.retryBackoffSeconds = retryBackoffSeconds
        self.retry_attempts = 0
        self.logger = logger
        self.runId = runId

        self.client = httpx.AsyncClient(
            base_url=self.baseUrl,
            timeout=timeoutSeconds,
            verify=verify,
            transport=transport,
        )

    async def __aenter__(self) -> "AuditApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()

    def resetRetryAttempts(self) -> None:
        """Сбрасывает счётчик retry_attempts."""
        self.retry_attempts = 0

    def getRetryAttempts(self) -> int:
        """Возвращает количество выполненных повторных попыток."""
        return self.retry_attempts

    def _headers(self) -> dict[str, str]:
        headers = {"accept": "application/json"}
        if self.apiToken:
            headers["Authorization"] = f"Bearer {self.apiToken}"
        return headers

    def _should_retry(self, resp: httpx.Response) -> bool:
        """Решает, стоит ли повторить запрос (429 или 5xx)."""
        if resp.status_code == 429:
            return True
        if 500 <= resp.status_code <= 599:
            return True
        return False

    async def _sleep_backoff(self, attempt: int) -> None:
        """Задержка с экспоненциальным ростом для ретраев."""
        delay = self.retryBackoffSeconds * (2 ** attempt)
        if delay > 0:
            await asyncio.sleep(delay)

    def _log(self, level: int, message: str) -> None:
        if self.logger is not None:
            logEvent(self.logger, level, self.runId, "http", message)

    async def _send(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        jsonBody: Any | None = None,
    ) -> httpx.Response:
        """Запрос с ретраями по 429/5xx и сетевым ошибкам; не-2xx → ApiError."""
        attempt = 0
        while True:
            try:
                resp = await self.client.request(
                    method,
                    path,
                    params=params or None,
                    headers=self._headers(),
                    json=jsonBody,
                )
            except (httpx.TimeoutException, httpx.TransportError) as exc:
                if attempt >= self.retries:
                    self._log(logging.ERROR, f"{method} {path}: network error after {attempt} retries: {exc}")
                    raise ApiError("Network error", status_code=None, retryable=False, code="NETWORK_ERROR") from exc
                self.retry_attempts += 1
                self._log(logging.WARNING, f"{method} {path}: network error, retry {attempt + 1}/{self.retries}")
                await self._sleep_backoff(attempt)
                attempt += 1
                continue

            if 200 <= resp.status_code < 300:
                self._log(logging.DEBUG, f"{method} {path} -> {resp.status_code}")
                return resp

            if self._should_retry(resp) and attempt < self.retries:
                self.retry_attempts += 1
                self._log(logging.WARNING, f"{method} {path} -> {resp.status_code}, retry {attempt + 1}/{self.retries}")
                await self._sleep_backoff(attempt)
                attempt += 1
                continue

            body_snippet = resp.text[:200] if resp.text else None
            self._log(logging.DEBUG, f"{method} {path} -> {resp.status_code}")
            raise ApiError(
                f"HTTP {resp.status_code} on {method} {path}",
                status_code=resp.status_code,
                body_snippet=body_snippet,
                retryable=self._should_retry(resp),
                details={"body_snippet": body_snippet},
            )

    async def getJson(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """GET JSON с ретраями; пустое тело → None, невалидный JSON → ApiError(INVALID_JSON)."""
        resp = await self._send("GET", path, params=params)
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as exc:
            raise ApiError(
                "Invalid JSON response",
                status_code=resp.status_code,
                retryable=False,
                code="INVALID_JSON",
            ) from exc

    async def requestJson(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        jsonBody: Any | None = None,
    ) -> tuple[int, Any]:
        """
        Универсальный JSON-запрос с ретраями.
        Возвращает (status_code, json|text|None) или бросает ApiError.
        """
        resp = await self._send(method, path, params=params, jsonBody=jsonBody)
        if resp.text:
            try:
                return resp.status_code, resp.json()
            except ValueError:
                return resp.status_code, resp.text
        return resp.status_code, None


__all__ = ["ApiError", "AuditApiClient"]
