"""
Culqi Gateway Client

Single chokepoint for outbound calls to the Culqi REST API. Owns credential
selection, request shaping, the bounded retry policy and the translation of
HTTP failures into the ErrorKind taxonomy.
"""

import asyncio
from typing import Any, Dict, Optional

import httpx

from gateway_sync.core.config import Settings, get_settings
from gateway_sync.core.errors import ErrorKind, GatewayError
from gateway_sync.core.logging import get_logger
from gateway_sync.integrations.culqi.base import (
    BODY_METHODS,
    DEFAULT_BASE_URL,
    TRACKING_HEADER,
    ChallengeRequired,
    Created,
    CreateOutcome,
    GatewayResponse,
    KeyScope,
)

logger = get_logger(__name__)

RETRYABLE_GET_STATUSES = frozenset({500, 503})


class CulqiClient:
    """Async client for the Culqi v2 API."""

    def __init__(
        self,
        secret_key: Optional[str] = None,
        public_key: Optional[str] = None,
        base_url: str = DEFAULT_BASE_URL,
        timeout_seconds: float = 15.0,
        retry_attempts: int = 1,
        retry_delay_seconds: float = 0.5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.secret_key = secret_key
        self.public_key = public_key
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.retry_attempts = retry_attempts
        self.retry_delay_seconds = retry_delay_seconds
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, **overrides: Any) -> "CulqiClient":
        settings = settings or get_settings()
        config: Dict[str, Any] = {
            "secret_key": settings.culqi_secret_key,
            "public_key": settings.culqi_public_key,
            "base_url": settings.culqi_base_url,
            "timeout_seconds": settings.gateway_timeout_seconds,
            "retry_attempts": settings.gateway_retry_attempts,
            "retry_delay_seconds": settings.gateway_retry_delay_seconds,
        }
        config.update(overrides)
        return cls(**config)

    def _credential(self, key_scope: KeyScope) -> str:
        key = self.public_key if key_scope is KeyScope.PUBLIC else self.secret_key
        if not key:
            raise GatewayError(
                ErrorKind.AUTH_MISCONFIGURED,
                f"Culqi {key_scope.value} key is not configured",
                code="CULQI_AUTH_ERROR",
            )
        return key

    async def request(
        self,
        endpoint: str,
        *,
        method: str = "GET",
        body: Optional[Dict[str, Any]] = None,
        key_scope: KeyScope = KeyScope.SECRET,
    ) -> GatewayResponse:
        """
        Issue one logical call against the gateway.

        Args:
            endpoint: Path below the API base, e.g. ``/charges/chr_test_x``
            method: HTTP verb
            body: JSON body, sent only for POST and PATCH
            key_scope: Which credential to authenticate with

        Returns:
            GatewayResponse with parsed body, HTTP status and tracking id

        Raises:
            GatewayError: For every non-2xx outcome, classified by ErrorKind
        """
        method = method.upper()
        api_key = self._credential(key_scope)
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        payload = body if body is not None and method in BODY_METHODS else None
        logger.info("gateway.request", method=method, endpoint=endpoint, key_scope=key_scope.value)

        attempt = 0
        while True:
            try:
                response = await self._send(method, endpoint, headers, payload)
            except httpx.TransportError as exc:
                if method == "GET" and attempt < self.retry_attempts:
                    await self._backoff(attempt, endpoint, reason=type(exc).__name__)
                    attempt += 1
                    continue
                logger.error("gateway.request.unreachable", method=method, endpoint=endpoint, error=str(exc))
                raise GatewayError(
                    ErrorKind.GATEWAY_UNAVAILABLE,
                    "Culqi service temporarily unavailable",
                    code="CULQI_SERVICE_UNAVAILABLE",
                ) from exc

            if self._should_retry(method, response.status_code) and attempt < self.retry_attempts:
                await self._backoff(attempt, endpoint, reason=str(response.status_code))
                attempt += 1
                continue
            break

        tracking_id = response.headers.get(TRACKING_HEADER)
        logger.info(
            "gateway.response",
            method=method,
            endpoint=endpoint,
            status=response.status_code,
            tracking_id=tracking_id,
        )
        if not response.is_success:
            raise self._translate_error(response, endpoint, tracking_id)

        data = self._parse_body(response, tracking_id)
        return GatewayResponse(data=data, status=response.status_code, tracking_id=tracking_id)

    async def create_resource(
        self,
        endpoint: str,
        body: Dict[str, Any],
        *,
        key_scope: KeyScope = KeyScope.SECRET,
    ) -> CreateOutcome:
        """POST a create call and discriminate created (201) from a 3DS challenge (200)."""
        response = await self.request(endpoint, method="POST", body=body, key_scope=key_scope)
        if response.status == 200:
            logger.info("gateway.challenge_required", endpoint=endpoint, tracking_id=response.tracking_id)
            return ChallengeRequired(payload=response.data, tracking_id=response.tracking_id)
        return Created(resource=response.data, tracking_id=response.tracking_id)

    async def _send(
        self,
        method: str,
        endpoint: str,
        headers: Dict[str, str],
        payload: Optional[Dict[str, Any]],
    ) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
            return await client.request(method, f"{self.base_url}{endpoint}", headers=headers, json=payload)

    @staticmethod
    def _should_retry(method: str, status_code: int) -> bool:
        # Mutating verbs are retried only on 429.
        if status_code == 429:
            return True
        return method == "GET" and status_code in RETRYABLE_GET_STATUSES

    async def _backoff(self, attempt: int, endpoint: str, *, reason: str) -> None:
        delay = self.retry_delay_seconds * (2 ** attempt)
        logger.warning("gateway.request.retrying", endpoint=endpoint, attempt=attempt + 1, delay=delay, reason=reason)
        await asyncio.sleep(delay)

    @staticmethod
    def _parse_body(response: httpx.Response, tracking_id: Optional[str]) -> Dict[str, Any]:
        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError as exc:
            raise GatewayError(
                ErrorKind.UNKNOWN_GATEWAY_ERROR,
                "Culqi returned a malformed response body",
                status_code=response.status_code,
                tracking_id=tracking_id,
            ) from exc
        return data if isinstance(data, dict) else {"data": data}

    @staticmethod
    def _translate_error(response: httpx.Response, endpoint: str, tracking_id: Optional[str]) -> GatewayError:
        status_code = response.status_code
        try:
            error_data = response.json()
        except ValueError:
            error_data = {}
        if not isinstance(error_data, dict):
            error_data = {}

        logger.error(
            "gateway.request.failed",
            endpoint=endpoint,
            status=status_code,
            tracking_id=tracking_id,
            culqi_error=error_data,
        )

        code = error_data.get("code")
        merchant_message = error_data.get("merchant_message")

        if status_code == 400:
            return GatewayError(
                ErrorKind.INVALID_REQUEST,
                merchant_message or "Invalid request to Culqi",
                status_code=status_code,
                tracking_id=tracking_id,
                code=code,
                param=error_data.get("param"),
            )
        if status_code == 401:
            return GatewayError(
                ErrorKind.AUTH_MISCONFIGURED,
                "Authentication with Culqi failed - verify the API keys",
                status_code=status_code,
                tracking_id=tracking_id,
                code="CULQI_AUTH_ERROR",
            )
        if status_code == 402:
            user_message = error_data.get("user_message")
            return GatewayError(
                ErrorKind.PAYMENT_DECLINED,
                user_message or merchant_message or "The payment could not be processed",
                status_code=status_code,
                tracking_id=tracking_id,
                code=code,
                decline_code=error_data.get("decline_code"),
                user_message=user_message,
                charge_id=error_data.get("charge_id"),
            )
        if status_code == 404:
            return GatewayError(
                ErrorKind.NOT_FOUND,
                merchant_message or "Resource not found in Culqi",
                status_code=status_code,
                tracking_id=tracking_id,
                code=code,
            )
        if status_code == 422:
            return GatewayError(
                ErrorKind.UNPROCESSABLE,
                merchant_message or "Invalid parameters",
                status_code=status_code,
                tracking_id=tracking_id,
                code=code,
                param=error_data.get("param"),
            )
        if status_code == 429:
            return GatewayError(
                ErrorKind.RATE_LIMITED,
                "Request limit exceeded - try again later",
                status_code=status_code,
                tracking_id=tracking_id,
                code="RATE_LIMIT_EXCEEDED",
            )
        if status_code in (500, 503):
            return GatewayError(
                ErrorKind.GATEWAY_UNAVAILABLE,
                "Culqi service temporarily unavailable",
                status_code=status_code,
                tracking_id=tracking_id,
                code="CULQI_SERVICE_UNAVAILABLE",
            )
        return GatewayError(
            ErrorKind.UNKNOWN_GATEWAY_ERROR,
            f"Unknown Culqi error ({status_code})",
            status_code=status_code,
            tracking_id=tracking_id,
            code=code,
        )
