from message_relay.models.db.attachment_model import AttachmentModel
from message_relay.models.db.conversation_model import (
    ConversationModel,
    ConversationParticipantModel,
)
from message_relay.models.db.message_model import MessageModel

__all__ = [
    "AttachmentModel",
    "ConversationModel",
    "ConversationParticipantModel",
    "MessageModel",
]
