from .schemas import (
    Agent,
    AgentRole,
    AISettings,
    Conversation,
    ConversationStatus,
    Customer,
    Message,
    Sender,
    SenderRole,
    SessionRecord,
    TrainingEntry,
)

__all__ = [
    "Agent",
    "AgentRole",
    "AISettings",
    "Conversation",
    "ConversationStatus",
    "Customer",
    "Message",
    "Sender",
    "SenderRole",
    "SessionRecord",
    "TrainingEntry",
]
