"""
Base Ledger Adapter - Abstract interface for all ledger data providers.

All adapters MUST:
- Decode every response through a pydantic schema before returning it
- Retry a small bounded number of times with backoff
- Raise LedgerAdapterError subclasses only; the caller decides scope

Request pipeline:

    _request(method, endpoint, schema)
      └── _fetch_with_retry      attempts = max(1, max_retries)
            └── _make_request    one HTTP exchange, errors mapped
      └── _decode                pydantic validation
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Optional, Type, TypeVar

import aiohttp
from pydantic import BaseModel, ValidationError

from ledger_adapters.exceptions import (
    ConfigurationError,
    LedgerAdapterError,
    MalformedResponseError,
    RateLimitError,
    TransportError,
)
from ledger_adapters.health import HealthTracker
from ledger_adapters.models import AdapterHealth, AdapterIncident, AdapterMetadata


logger = logging.getLogger(__name__)

SchemaT = TypeVar("SchemaT", bound=BaseModel)


class BaseLedgerAdapter(ABC):
    """
    Abstract base class for all ledger data adapters.

    Subclasses provide name, metadata() and _ping() (the cheapest call
    that proves the upstream answers); everything else is shared.

    The aiohttp session is created lazily and closed by close() unless it
    was injected, in which case the caller owns it.
    """

    DEFAULT_TIMEOUT = 30.0
    MAX_RETRIES = 2
    RETRY_BACKOFF_BASE = 1.5
    DEGRADED_THRESHOLD = 3
    UNAVAILABLE_THRESHOLD = 5

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[aiohttp.ClientSession] = None,
        max_retries: Optional[int] = None,
    ) -> None:
        if not base_url:
            raise ConfigurationError("Adapter base URL is empty", config_key="base_url")
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._session = session
        self._owns_session = session is None
        self._max_retries = self.MAX_RETRIES if max_retries is None else max_retries
        self._tracker = HealthTracker(
            self.name,
            degraded_after=self.DEGRADED_THRESHOLD,
            unavailable_after=self.UNAVAILABLE_THRESHOLD,
        )

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier used in logs and incidents."""
        pass

    @abstractmethod
    def metadata(self) -> AdapterMetadata:
        pass

    @abstractmethod
    async def _ping(self) -> None:
        """Issue one cheap request; raise on failure."""
        pass

    @property
    def base_url(self) -> str:
        return self._base_url

    # ─────────────────────────────────────────────────────────────
    # Request pipeline
    # ─────────────────────────────────────────────────────────────

    async def _request(
        self,
        method: str,
        endpoint: str,
        schema: Type[SchemaT],
        json_body: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, Any]] = None,
    ) -> SchemaT:
        """
        Perform a request with retry, then decode it through schema.

        Raises:
            TransportError: after retries are exhausted
            MalformedResponseError: if the payload does not match schema
        """
        try:
            payload = await self._fetch_with_retry(method, endpoint, json_body, params)
            decoded = self._decode(schema, payload, endpoint)
        except LedgerAdapterError as e:
            self._tracker.record_failure(e, endpoint, json_body or params)
            raise
        self._tracker.record_success()
        return decoded

    async def _fetch_with_retry(
        self,
        method: str,
        endpoint: str,
        json_body: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, Any]] = None,
    ) -> Any:
        """
        Fetch raw JSON, retrying only 5xx and connection failures.

        Rate limits, other 4xx and malformed payloads fail at once: the
        cycle records a zero contribution for the scope and moves on.
        """
        attempts = max(1, self._max_retries)
        last_error: Optional[TransportError] = None

        for attempt in range(attempts):
            try:
                return await self._make_request(method, endpoint, json_body, params)
            except RateLimitError:
                raise
            except TransportError as e:
                if e.is_client_error:
                    raise
                last_error = e

            if attempt + 1 < attempts:
                delay = self.RETRY_BACKOFF_BASE ** attempt
                logger.warning(
                    f"[{self.name}] Retry {attempt + 1}/{attempts} "
                    f"for {endpoint or 'query'} in {delay:.1f}s: {last_error}"
                )
                await asyncio.sleep(delay)

        raise TransportError(
            f"Failed after {attempts} attempts",
            adapter_name=self.name,
            endpoint=endpoint,
            original_error=last_error,
        )

    def _decode(self, schema: Type[SchemaT], payload: Any, endpoint: str) -> SchemaT:
        """Validate a JSON payload against its wire schema."""
        if not isinstance(payload, dict):
            raise MalformedResponseError(
                f"Expected JSON object, got {type(payload).__name__}",
                adapter_name=self.name,
                endpoint=endpoint,
                raw_data=payload,
            )
        try:
            return schema.model_validate(payload)
        except ValidationError as e:
            # Report the first offending field by its wire name
            errors = e.errors()
            field_name = ".".join(str(part) for part in errors[0]["loc"]) if errors else None
            raise MalformedResponseError(
                f"Schema validation failed for {schema.__name__}",
                adapter_name=self.name,
                endpoint=endpoint,
                raw_data=payload,
                field_name=field_name,
                original_error=e,
            )

    # ─────────────────────────────────────────────────────────────
    # HTTP
    # ─────────────────────────────────────────────────────────────

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout),
                headers={
                    "Accept": "application/json",
                    "Content-Type": "application/json",
                    "User-Agent": "CirculationReconciler/1.0",
                },
            )
            self._owns_session = True
        return self._session

    def _url(self, endpoint: str) -> str:
        if not endpoint:
            return self._base_url
        return f"{self._base_url}/{endpoint.lstrip('/')}"

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        json_body: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, Any]] = None,
    ) -> Any:
        """One HTTP exchange; transport problems become LedgerAdapterErrors."""
        session = await self._get_session()
        url = self._url(endpoint)
        started = time.monotonic()

        try:
            async with session.request(method, url, json=json_body, params=params) as response:
                self._tracker.record_request((time.monotonic() - started) * 1000)
                self._tracker.record_rate_limit_remaining(
                    response.headers.get("X-RateLimit-Remaining")
                    or response.headers.get("X-Rate-Limit-Remaining")
                )
                await self._raise_for_status(response, endpoint, url)
                try:
                    return await response.json(content_type=None)
                except ValueError as e:
                    raise MalformedResponseError(
                        f"Response is not valid JSON: {e}",
                        adapter_name=self.name,
                        endpoint=endpoint,
                        original_error=e,
                    )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(
                f"Connection error: {e!r}",
                adapter_name=self.name,
                endpoint=endpoint,
                request_url=url,
                original_error=e,
            )

    async def _raise_for_status(self, response: Any, endpoint: str, url: str) -> None:
        if response.status == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimitError(
                "Rate limit exceeded",
                adapter_name=self.name,
                endpoint=endpoint,
                request_url=url,
                retry_after_seconds=int(retry_after) if retry_after and retry_after.isdigit() else 60,
            )
        if response.status >= 400:
            body = await response.text()
            raise TransportError(
                f"HTTP {response.status}",
                adapter_name=self.name,
                endpoint=endpoint,
                status_code=response.status,
                response_body=body[:500],
                request_url=url,
            )

    # ─────────────────────────────────────────────────────────────
    # Health
    # ─────────────────────────────────────────────────────────────

    async def health_check(self) -> AdapterHealth:
        """Ping the upstream once and report the resulting health."""
        started = time.monotonic()
        error: Optional[Exception] = None
        try:
            await self._ping()
        except Exception as e:
            error = e
        return self._tracker.record_check(error, (time.monotonic() - started) * 1000)

    def get_health(self) -> AdapterHealth:
        return self._tracker.health

    def get_incidents(self, limit: int = 10) -> list[AdapterIncident]:
        return self._tracker.incidents(limit)

    def is_healthy(self) -> bool:
        return self._tracker.health.is_healthy()

    def is_usable(self) -> bool:
        """False once the adapter is rate limited or unavailable."""
        return self._tracker.health.is_usable()

    # ─────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────

    async def close(self) -> None:
        """Close the session if this adapter created it."""
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> "BaseLedgerAdapter":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(name={self.name}, status={self.get_health().status.value})>"
