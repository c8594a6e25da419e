from talkbot.models.api_usage import ApiUsage
from talkbot.models.completion_job import CompletionJob
from talkbot.models.conversation_turn import ConversationTurn
from talkbot.models.persona import BotPersona
from talkbot.models.room_session import RoomSession

__all__ = [
    "BotPersona",
    "RoomSession",
    "ConversationTurn",
    "ApiUsage",
    "CompletionJob",
]
