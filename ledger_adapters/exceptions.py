"""
Ledger Adapter Exceptions - Custom exception hierarchy.

Adapters raise these; the snapshot collector catches them at the smallest
scope (one account, one page, one token) and records a zero contribution.

    LedgerAdapterError
    ├── TransportError          unreachable host, timeout, non-success status
    │   └── RateLimitError      HTTP 429
    ├── MalformedResponseError  unparseable JSON, schema mismatch, GraphQL errors
    └── ConfigurationError      unusable adapter settings
"""

from datetime import datetime, timezone
from typing import Any, Optional


class LedgerAdapterError(Exception):
    """Base exception for all ledger adapter errors."""

    def __init__(
        self,
        message: str,
        *,
        adapter_name: Optional[str] = None,
        endpoint: Optional[str] = None,
        original_error: Optional[Exception] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.adapter_name = adapter_name
        self.endpoint = endpoint
        self.original_error = original_error
        self.context = context or {}
        self.timestamp = datetime.now(timezone.utc)

    def _details(self) -> dict[str, Any]:
        """Subclass-specific fields for to_dict()."""
        return {}

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        data = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "adapter_name": self.adapter_name,
            "endpoint": self.endpoint,
            "original_error": str(self.original_error) if self.original_error else None,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
        }
        data.update(self._details())
        return data

    def __str__(self) -> str:
        text = f"{self.__class__.__name__}: {self.message}"
        if self.adapter_name:
            text += f" [adapter={self.adapter_name}]"
        if self.endpoint:
            text += f" [endpoint={self.endpoint}]"
        if self.original_error:
            text += f" (caused by: {self.original_error})"
        return text


class TransportError(LedgerAdapterError):
    """Upstream API unreachable, timed out, or answered with a non-success status."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        request_url: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.status_code = status_code
        self.response_body = response_body
        self.request_url = request_url

    @property
    def is_client_error(self) -> bool:
        """4xx responses are not worth retrying."""
        return self.status_code is not None and 400 <= self.status_code < 500

    def _details(self) -> dict[str, Any]:
        return {
            "status_code": self.status_code,
            "response_body": self.response_body,
            "request_url": self.request_url,
        }


class RateLimitError(TransportError):
    """HTTP 429 from an upstream API. Never retried within a cycle."""

    def __init__(
        self,
        message: str,
        *,
        retry_after_seconds: Optional[int] = None,
        **kwargs: Any,
    ) -> None:
        kwargs.setdefault("status_code", 429)
        super().__init__(message, **kwargs)
        self.retry_after_seconds = retry_after_seconds

    def _details(self) -> dict[str, Any]:
        data = super()._details()
        data["retry_after_seconds"] = self.retry_after_seconds
        return data


class MalformedResponseError(LedgerAdapterError):
    """Payload could not be parsed or does not match its wire schema."""

    def __init__(
        self,
        message: str,
        *,
        raw_data: Optional[Any] = None,
        field_name: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.raw_data = raw_data
        self.field_name = field_name

    def _details(self) -> dict[str, Any]:
        # Payloads can be whole holder pages; keep log lines bounded
        return {
            "raw_data": str(self.raw_data)[:500] if self.raw_data is not None else None,
            "field_name": self.field_name,
        }


class ConfigurationError(LedgerAdapterError):
    """Adapter settings are unusable (e.g. an empty base URL)."""

    def __init__(self, message: str, *, config_key: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.config_key = config_key

    def _details(self) -> dict[str, Any]:
        return {"config_key": self.config_key}
