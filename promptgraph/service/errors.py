from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each exception class defines an HTTP ``status_code`` and a stable
    ``error_code``:
    - validation_error (400)
    - server_error (500)
    - upstream_error (502)
    - upstream_unavailable (503)
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class ValidationError(ServiceError):
    """Request validation failed (400)."""
    status_code = 400
    error_code = "validation_error"


class ConfigurationError(ServiceError):
    """A required setting, such as a provider credential, is missing (500)."""
    status_code = 500
    error_code = "server_error"


class GenerationError(ServiceError):
    """The text-generation collaborator failed."""

    status_code = 502
    error_code = "upstream_error"
    transient: bool = False


class TransientGenerationError(GenerationError):
    """Timeouts, dropped connections, rate limits and provider outages (503)."""
    status_code = 503
    error_code = "upstream_unavailable"
    transient = True


class PermanentGenerationError(GenerationError):
    """Rejected credentials, invalid requests and unusable completions (502)."""
    pass


__all__ = [
    "ServiceError",
    "ValidationError",
    "ConfigurationError",
    "GenerationError",
    "TransientGenerationError",
    "PermanentGenerationError",
]
