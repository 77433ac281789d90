class PaysyncError(Exception):
    """Base exception for the webhook ingestion service."""

    pass


class AuthenticationFailure(PaysyncError):
    """Raised when a delivery cannot be authenticated. Never retried usefully."""

    reason = "authentication_failed"


class SecretNotConfigured(AuthenticationFailure):
    """Raised when no webhook secret is configured (fail closed)."""

    reason = "secret_not_configured"


class MissingSignature(AuthenticationFailure):
    """Raised when the signature header is absent or empty."""

    reason = "missing_signature"


class MalformedSignature(AuthenticationFailure):
    """Raised when the signature header is not a hex-encoded SHA-256 digest."""

    reason = "malformed_signature"


class SignatureMismatch(AuthenticationFailure):
    """Raised when the computed HMAC does not match the supplied signature."""

    reason = "signature_mismatch"


class MalformedPayload(PaysyncError):
    """Raised when the body is not valid JSON or violates the event contract."""

    pass


class DownstreamFailure(PaysyncError):
    """Raised when storage, locking or another collaborator fails or times out."""

    def __init__(self, operation: str, detail: str = ""):
        self.operation = operation
        self.detail = detail
        message = f"Downstream failure during '{operation}'"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
