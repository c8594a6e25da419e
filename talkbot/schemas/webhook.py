from typing import Any, Optional, Union

from pydantic import AliasChoices, BaseModel, Field


class WebhookActor(BaseModel):
    id: str
    name: Optional[str] = None


class WebhookObject(BaseModel):
    id: Optional[Union[int, str]] = None
    # JSON-encoded string {"message": ..., "parameters": ...}; some senders inline the object
    content: Union[str, dict[str, Any]]


class WebhookTarget(BaseModel):
    id: str
    name: Optional[str] = None


class WebhookEnvelope(BaseModel):
    type: Optional[str] = None
    actor: WebhookActor
    object: WebhookObject
    target: WebhookTarget
    callback_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("callback_url", "callbackUrl"),
    )


class InboundMessage(BaseModel):
    actor_id: str
    actor_name: Optional[str] = None
    room_token: str
    text: str
    message_id: int = 0
    callback_url: Optional[str] = None


class WebhookResponse(BaseModel):
    success: bool
    status: str
    message: Optional[str] = None
    persona: Optional[str] = None
    stage: Optional[str] = None
    delivered: Optional[bool] = None
