"""Error taxonomy of the webhook pipeline.

The router maps these to HTTP status codes. Messages are for logs only and
never reach the messaging platform.
"""


class BotError(Exception):
    """Base class for pipeline errors."""

    status_code = 500
    public_message = "Internal error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class AuthenticationError(BotError):
    """Bad or missing webhook signature."""

    status_code = 401
    public_message = "Invalid signature"


class ValidationError(BotError):
    """Malformed webhook payload."""

    status_code = 400
    public_message = "Invalid webhook payload"


class ConfigurationError(BotError):
    """Deployment misconfiguration, e.g. no persona registered."""

    status_code = 503
    public_message = "Bot is not configured"


class UpstreamError(BotError):
    """Embedding, search, completion or dispatch HTTP failure."""

    status_code = 502
    public_message = "Upstream service failed"

    def __init__(self, message: str, endpoint: str, latency_ms: int = 0, status: int | None = None):
        self.endpoint = endpoint
        self.latency_ms = latency_ms
        self.status = status
        super().__init__(message)


class PersistenceError(BotError):
    """Session or conversation write failure; fatal for the current turn."""


class ConcurrentUpdateError(PersistenceError):
    """Another request changed the room session first."""

    status_code = 409
    public_message = "Concurrent update, please retry"


class StateCorruptionError(PersistenceError):
    """Stored onboarding state has an unexpected shape."""
