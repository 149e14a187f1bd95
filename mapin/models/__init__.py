from mapin.models.auth_session import AuthSession
from mapin.models.change_event import ChangeEvent
from mapin.models.conversation import Conversation, ConversationParticipant
from mapin.models.message import Message
from mapin.models.user import User

__all__ = [
    "AuthSession",
    "ChangeEvent",
    "Conversation",
    "ConversationParticipant",
    "Message",
    "User",
]
