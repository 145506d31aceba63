"""
Push delivery error taxonomy and per-channel failure classification.

Every provider failure is reduced to a FailureClass:

- PERMANENT: the endpoint is dead (web 404/410, FCM invalid or unregistered
  token). It is removed from the registry, never retried and never counted
  against the circuit breaker.
- TRANSIENT: anything else. Web push keeps the subscription; the mobile
  channel retries and feeds the breaker.
"""

from enum import Enum


class FailureClass(str, Enum):
    PERMANENT = "permanent"
    TRANSIENT = "transient"


class PushError(Exception):
    """Base class for push delivery errors."""


class ConfigurationMissing(PushError):
    """Channel credentials are not configured; the channel is disabled."""


class ValidationError(PushError):
    """A required input was missing; rejected before any I/O."""


class CircuitOpenError(PushError):
    """The circuit breaker is open; the provider is not contacted."""

    def __init__(self, message: str = "Circuit breaker open") -> None:
        super().__init__(message)


class ProviderError(PushError):
    """A push provider rejected a delivery.

    Web push failures carry the HTTP ``status_code`` returned by the push
    service; FCM failures carry a normalized error ``code`` such as
    ``registration-token-not-registered``.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        code: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code

    def __repr__(self) -> str:
        return f"ProviderError({str(self)!r}, status_code={self.status_code}, code={self.code})"


# Web push statuses meaning the subscription no longer exists
WEB_PUSH_GONE_STATUSES = frozenset({404, 410})

# FCM error codes meaning the registration token is unusable
INVALID_TOKEN_CODES = frozenset({
    "invalid-registration-token",
    "registration-token-not-registered",
    "invalid-argument",
})


def normalize_fcm_code(code: str | None) -> str | None:
    """Strip the ``messaging/`` prefix the Node SDK uses and unify spelling."""
    if not code or not isinstance(code, str):
        return None
    code = code.strip().lower().replace("_", "-")
    if code.startswith("messaging/"):
        code = code[len("messaging/"):]
    return code


def classify_web_push_error(error: BaseException) -> FailureClass:
    """Classify a failed web push delivery."""
    status_code = getattr(error, "status_code", None)
    if status_code in WEB_PUSH_GONE_STATUSES:
        return FailureClass.PERMANENT
    return FailureClass.TRANSIENT


def classify_fcm_error(error: BaseException) -> FailureClass:
    """Classify a failed FCM delivery."""
    code = normalize_fcm_code(getattr(error, "code", None))
    if code in INVALID_TOKEN_CODES:
        return FailureClass.PERMANENT
    return FailureClass.TRANSIENT


def is_invalid_token_error(error: BaseException) -> bool:
    return classify_fcm_error(error) is FailureClass.PERMANENT
