"""Domain-specific exception hierarchy.

All exceptions inherit from ``DomainError`` so callers can catch the entire
family in one clause while still discriminating on subclass.

Only ``ValidationError``, ``ConfigurationError``, ``ProviderUnavailable`` and
``AllProvidersFailedError`` ever escape ``ChatGateway.chat``.  The
``ProviderCallError`` family is recovered inside the gateway.
"""

from __future__ import annotations

from dobby.domain.enums import ErrorKind


class DomainError(Exception):
    """Base class for all domain-layer errors."""

    def __init__(self, message: str, *, code: str = "DOMAIN_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(message)


# ── Validation ───────────────────────────────────────────────
class ValidationError(DomainError):
    """Input failed domain validation rules."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="VALIDATION_ERROR")


# ── Configuration ────────────────────────────────────────────
class ConfigurationError(DomainError):
    """No provider has a usable credential."""

    def __init__(self, message: str = "At least one AI provider must be configured") -> None:
        super().__init__(message, code="CONFIGURATION_ERROR")


class ProviderUnavailable(DomainError):
    """Caller asked for a provider that has no credentials."""

    def __init__(self, provider: str) -> None:
        self.provider = provider
        super().__init__(
            f"Provider {provider!r} is not configured",
            code="PROVIDER_UNAVAILABLE",
        )


# ── Provider call failures (recovered inside the gateway) ───
class ProviderCallError(DomainError):
    """A single upstream call failed.  ``kind`` decides how to recover."""

    kind: ErrorKind = ErrorKind.FATAL

    def __init__(
        self,
        provider: str,
        message: str,
        *,
        status_code: int | None = None,
    ) -> None:
        self.provider = provider
        self.status_code = status_code
        super().__init__(f"[{provider}] {message}", code=f"PROVIDER_{self.kind.name}")


class AuthError(ProviderCallError):
    kind = ErrorKind.AUTH


class RateLimitError(ProviderCallError):
    kind = ErrorKind.RATE_LIMIT


class TransientError(ProviderCallError):
    kind = ErrorKind.TRANSIENT


class FatalError(ProviderCallError):
    kind = ErrorKind.FATAL


def classify_status(provider: str, status_code: int, detail: str = "") -> ProviderCallError:
    """Map an HTTP status from a provider into the call-error taxonomy."""
    message = f"HTTP {status_code}"
    if detail:
        message = f"{message}: {detail[:200]}"
    if status_code in (401, 403):
        return AuthError(provider, message, status_code=status_code)
    if status_code == 429:
        return RateLimitError(provider, message, status_code=status_code)
    if status_code == 408 or status_code >= 500:
        return TransientError(provider, message, status_code=status_code)
    return FatalError(provider, message, status_code=status_code)


# ── Terminal ─────────────────────────────────────────────────
class AllProvidersFailedError(DomainError):
    """Raised when the primary provider and the whole fallback chain failed."""

    def __init__(
        self,
        errors: dict[str, str],
        *,
        last_provider: str | None = None,
        last_error: ProviderCallError | None = None,
    ) -> None:
        self.errors = errors
        self.last_provider = last_provider
        self.last_error = last_error
        providers = ", ".join(errors.keys()) or "none"
        detail = f" (last: {last_error.message})" if last_error else ""
        super().__init__(
            f"All AI providers failed: {providers}{detail}",
            code="ALL_PROVIDERS_FAILED",
        )
