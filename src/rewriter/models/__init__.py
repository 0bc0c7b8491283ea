"""Database models and plain records for conversations and messages."""
from rewriter.models.conversation import Base, Conversation, Message
from rewriter.models.records import Role, Identity, ConversationRecord, MessageRecord
