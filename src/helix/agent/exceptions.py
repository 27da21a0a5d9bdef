"""Exception hierarchy for the Helix agent core.

Exceptions carry enough context for the task queue to pick a retry policy
and for logs to explain what went wrong.

Exception Hierarchy:
    HelixError (base)
    ├── ConfigurationError (unrecoverable - fix config)
    ├── ProviderError (model endpoint failures)
    │   ├── TransientProviderError (recoverable - retry)
    │   │   ├── RateLimitError
    │   │   ├── ServerError
    │   │   └── NetworkError
    │   ├── BadRequestError (retried a bounded number of times)
    │   ├── ModelNotFoundError (stale model registry)
    │   └── UnsupportedFeatureError
    └── MissingCapabilityError (unrecoverable - surfaced to the user)
"""

from __future__ import annotations

from typing import Any, Optional

# ============================================
# Base Exception
# ============================================


class HelixError(Exception):
    """Base exception for all agent-core errors.

    Subclasses set ``code`` and ``recoverable`` at class level; both can be
    overridden per instance.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "RATE_LIMIT_EXCEEDED")
        details: Context for logs and audit entries
        cause: The original exception, also chained as ``__cause__``
        recoverable: Whether retrying the same work might succeed
    """

    code = "HELIX_ERROR"
    recoverable = False

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
        recoverable: Optional[bool] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = dict(details or {})
        self.cause = cause
        if code is not None:
            self.code = code
        if recoverable is not None:
            self.recoverable = recoverable
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        if not self.details:
            return self.message
        context = " ".join(f"{k}={v}" for k, v in self.details.items())
        return f"{self.message} [{context}]"

    def to_dict(self) -> dict[str, Any]:
        """Serializable form for audit entries and structured logs."""
        return {
            "error": type(self).__name__,
            "code": self.code,
            "message": self.message,
            "recoverable": self.recoverable,
            "details": self.details,
            "cause": repr(self.cause) if self.cause is not None else None,
        }


# ============================================
# Configuration Errors
# ============================================


class ConfigurationError(HelixError):
    """Raised when configuration is missing or invalid."""

    code = "CONFIGURATION_ERROR"

    def __init__(self, message: str, missing_keys: Optional[list[str]] = None, **kwargs):
        self.missing_keys = list(missing_keys or [])
        details = kwargs.pop("details", None) or {}
        if self.missing_keys:
            details["missing_keys"] = self.missing_keys
        super().__init__(message, details=details, **kwargs)


# ============================================
# Provider Errors
# ============================================


class ProviderError(HelixError):
    """A model endpoint failed or refused the request.

    ``provider``, ``model_id`` and ``status_code`` are copied into
    ``details`` so they show up in logs.
    """

    code = "PROVIDER_ERROR"
    default_status: Optional[int] = None

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        model_id: Optional[str] = None,
        status_code: Optional[int] = None,
        **kwargs,
    ):
        self.provider = provider
        self.model_id = model_id
        self.status_code = status_code if status_code is not None else self.default_status

        details = kwargs.pop("details", None) or {}
        for key in ("provider", "model_id", "status_code"):
            value = getattr(self, key)
            if value is not None:
                details[key] = value
        super().__init__(message, details=details, **kwargs)


class TransientProviderError(ProviderError):
    """A failure expected to clear up on its own."""

    recoverable = True


class RateLimitError(TransientProviderError):
    """Raised when the provider throttles the request.

    Attributes:
        retry_after: Seconds to wait before retrying, if the provider said so
    """

    code = "RATE_LIMIT_EXCEEDED"
    default_status = 429

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: Optional[float] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after
        if retry_after is not None:
            self.details["retry_after"] = retry_after


class ServerError(TransientProviderError):
    """Raised when the provider returns a 5xx response."""

    code = "SERVER_ERROR"

    def __init__(self, message: str = "Provider server error", **kwargs):
        super().__init__(message, **kwargs)


class NetworkError(TransientProviderError):
    """Raised when the provider could not be reached or timed out."""

    code = "NETWORK_ERROR"

    def __init__(self, message: str = "Network error", **kwargs):
        super().__init__(message, **kwargs)


class BadRequestError(ProviderError):
    """Raised when the provider rejects the request payload.

    Recoverable because some providers answer a transient overload with
    a 400; the retry policy bounds the attempts.
    """

    code = "BAD_REQUEST"
    recoverable = True
    default_status = 400

    def __init__(self, message: str = "Bad request", **kwargs):
        super().__init__(message, **kwargs)


class ModelNotFoundError(ProviderError):
    """Raised when the model id is unknown to the provider or registry."""

    code = "MODEL_NOT_FOUND"
    recoverable = True

    def __init__(self, message: str = "Model not found", **kwargs):
        super().__init__(message, **kwargs)


class UnsupportedFeatureError(ProviderError):
    """Raised when an integration lacks a requested feature."""

    code = "UNSUPPORTED_FEATURE"

    def __init__(self, message: str, feature: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.feature = feature
        if feature:
            self.details["feature"] = feature


# ============================================
# Capability Errors
# ============================================


class MissingCapabilityError(HelixError):
    """Raised when a turn needs a capability the deployment does not have.

    Not retried: the turn is aborted and the user sees the message.
    """

    code = "MISSING_CAPABILITY"

    def __init__(self, message: str, capability: Optional[str] = None, **kwargs):
        self.capability = capability
        details = kwargs.pop("details", None) or {}
        if capability:
            details["capability"] = capability
        super().__init__(message, details=details, **kwargs)
