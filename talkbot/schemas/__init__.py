from talkbot.schemas.persona import PersonaProfile
from talkbot.schemas.webhook import InboundMessage, WebhookEnvelope, WebhookResponse

__all__ = ["InboundMessage", "PersonaProfile", "WebhookEnvelope", "WebhookResponse"]
