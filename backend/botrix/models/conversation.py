# /botrix/models/conversation.py

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class MessageRole(str, Enum):
    USER = "user"
    BOT = "bot"


class ConversationMessage(BaseModel):
    """One message exchanged in a conversation."""
    model_config = ConfigDict(use_enum_values=True)

    role: MessageRole = Field(..., description="Who sent the message")
    text: str = Field(default="", description="Message text content")
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="When the message was recorded")
    meta: Dict[str, Any] = Field(default_factory=dict, description="Additional metadata (e.g. requested actions)")


class Conversation(BaseModel):
    """
    Conversation state for one end-user session with one bot.

    `variables` is the variable context threaded through flow turns: it is
    passed to the interpreter as-is and replaced by the variables it returns.
    """
    id: Optional[str] = None
    bot_id: str = Field(..., description="Owning bot identifier")
    session_id: str = Field(..., description="End-user session identifier")
    status: str = Field(default="active", description="Conversation status")
    variables: Dict[str, Any] = Field(default_factory=dict, description="Flow variable bindings")
    messages: List[ConversationMessage] = Field(default_factory=list, description="Message history, oldest first")
    flow_version: Optional[int] = Field(default=None, description="Version of the flow that ran the last turn")
    created_at: datetime = Field(default_factory=datetime.utcnow, description="Conversation creation timestamp")
    updated_at: datetime = Field(default_factory=datetime.utcnow, description="Last update timestamp")

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "Conversation":
        data = dict(document)
        object_id = data.pop("_id", None)
        return cls.model_validate({**data, "id": str(object_id) if object_id is not None else None})

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(exclude={"id"})
