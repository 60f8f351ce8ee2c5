"""Payment gateway interface and HTTP client."""

import asyncio
from abc import ABC, abstractmethod

import httpx
import structlog
from pydantic import ValidationError

from .config import GatewaySettings, PaymentsConfig, default_config
from .errors import GatewayUnavailableError
from .models import GatewayRequest, GatewayResponse

logger = structlog.get_logger()

# 408 / 429 / 5xx are treated as "the charge may not have happened yet"
RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


class PaymentGateway(ABC):
    @abstractmethod
    async def charge(self, request: GatewayRequest) -> GatewayResponse:
        """Submit one charge.

        Raises GatewayUnavailableError for transient failures, after which the
        same request (same reference) may be sent again.
        """
        ...


class HttpPaymentGateway(PaymentGateway):
    """Posts charges to the provider, passing ``reference`` as the idempotency key."""

    def __init__(
        self,
        config: PaymentsConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings: GatewaySettings = (config or default_config).gateway
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(self._settings.timeout_seconds)
        )
        self._owns_client = client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def charge(self, request: GatewayRequest) -> GatewayResponse:
        try:
            response = await self._client.post(
                self._settings.url,
                json=request.to_wire(),
                headers={"Idempotency-Key": request.reference},
            )
        except httpx.HTTPError as exc:
            raise GatewayUnavailableError(f"gateway request failed: {exc!r}") from exc

        if response.status_code in RETRYABLE_STATUS_CODES:
            raise GatewayUnavailableError(f"gateway returned HTTP {response.status_code}")

        try:
            return GatewayResponse.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            # A 2xx/4xx we cannot read may still have charged; treat as transient
            raise GatewayUnavailableError("unreadable gateway response") from exc


async def charge_with_retry(
    gateway: PaymentGateway,
    request: GatewayRequest,
    settings: GatewaySettings,
) -> GatewayResponse:
    """Retry transient failures with exponential backoff, reusing the reference."""
    last_error: GatewayUnavailableError | None = None

    for attempt in range(1, settings.max_attempts + 1):
        try:
            return await gateway.charge(request)
        except GatewayUnavailableError as exc:
            last_error = exc
            if attempt == settings.max_attempts:
                break
            delay = min(
                settings.backoff_base_seconds * (2 ** (attempt - 1)),
                settings.backoff_max_seconds,
            )
            logger.warning(
                "gateway_call_retrying",
                reference=request.reference,
                attempt=attempt,
                max_attempts=settings.max_attempts,
                delay_seconds=delay,
                error=str(exc),
            )
            await asyncio.sleep(delay)

    logger.error(
        "gateway_retries_exhausted",
        reference=request.reference,
        attempts=settings.max_attempts,
    )
    raise last_error or GatewayUnavailableError("no gateway attempts configured")
