from talkbot.services.errors import (
    AuthenticationError,
    BotError,
    ConcurrentUpdateError,
    ConfigurationError,
    PersistenceError,
    StateCorruptionError,
    UpstreamError,
    ValidationError,
)
from talkbot.services.result import Result

__all__ = [
    "BotError",
    "AuthenticationError",
    "ValidationError",
    "ConfigurationError",
    "UpstreamError",
    "PersistenceError",
    "ConcurrentUpdateError",
    "StateCorruptionError",
    "Result",
]
