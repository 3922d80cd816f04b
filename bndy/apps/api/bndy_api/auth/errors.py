"""Authentication error taxonomy.

Every failure carries an HTTP status, a problem title and a coarse error code.
The error code is the only detail ever shown to end users (JSON problem
responses, or ``?error=<code>`` on login redirects).
"""

from typing import Optional


class AuthError(Exception):
    """Base class for authentication failures."""

    status_code: int = 400
    title: str = "Authentication Failed"
    error_code: str = "auth_error"
    problem_slug: str = "auth-error"

    def __init__(
        self,
        detail: Optional[str] = None,
        *,
        error_code: Optional[str] = None,
        retry_after: Optional[int] = None,
    ):
        self.detail = detail or self.title
        if error_code is not None:
            self.error_code = error_code
        self.retry_after = retry_after
        super().__init__(self.detail)

    @property
    def error_type(self) -> str:
        return f"https://api.bndy.co.uk/problems/{self.problem_slug}"


class InvalidInput(AuthError):
    """Malformed phone number, email address or request field."""

    status_code = 400
    title = "Invalid Input"
    error_code = "invalid_input"
    problem_slug = "invalid-input"


class CredentialNotFound(AuthError):
    """Unknown, already consumed, or burned ephemeral credential."""

    status_code = 401
    title = "Invalid Code"
    error_code = "invalid_code"
    problem_slug = "credential-not-found"


class CredentialExpired(AuthError):
    """Ephemeral credential exists but its validity window has passed."""

    status_code = 401
    title = "Code Expired"
    error_code = "expired_code"
    problem_slug = "credential-expired"


class CredentialMismatch(AuthError):
    """Presented secret (OTP code) does not match."""

    status_code = 401
    title = "Invalid Code"
    error_code = "invalid_code"
    problem_slug = "credential-mismatch"


class InvalidState(AuthError):
    """OAuth state missing, unknown, expired or already used."""

    status_code = 400
    title = "Invalid State"
    error_code = "invalid_state"
    problem_slug = "invalid-state"


class ProviderExchangeFailed(AuthError):
    """Identity provider rejected the exchange or returned unusable claims.

    The detail is always generic; upstream bodies are never surfaced.
    """

    status_code = 502
    title = "Identity Provider Error"
    error_code = "provider_error"
    problem_slug = "provider-error"


class SessionInvalid(AuthError):
    status_code = 401
    title = "Unauthorized"
    error_code = "session_invalid"
    problem_slug = "session-invalid"


class SessionExpired(AuthError):
    status_code = 401
    title = "Session Expired"
    error_code = "session_expired"
    problem_slug = "session-expired"


class DeliveryFailed(AuthError):
    """Notifier could not deliver the message.

    Retryable: the credential already exists and stays valid until its expiry.
    """

    status_code = 503
    title = "Delivery Failed"
    error_code = "delivery_failed"
    problem_slug = "delivery-failed"

    def __init__(self, detail: Optional[str] = None, *, retry_after: int = 30):
        super().__init__(detail, retry_after=retry_after)


class RateLimited(AuthError):
    """Too many credential requests for one destination in the current window."""

    status_code = 429
    title = "Too Many Requests"
    error_code = "rate_limited"
    problem_slug = "rate-limited"
