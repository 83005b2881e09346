# /botrix/services/conversation_service.py

import logging
from datetime import datetime

from botrix.config import strings
from botrix.config.settings import settings
from botrix.flows.engine import FlowExecutionResult
from botrix.models.conversation import Conversation, ConversationMessage, MessageRole
from botrix.services.db_service import db_service
from botrix.services.flow_service import flow_service

logger = logging.getLogger(__name__)


class ConversationService:
    """
    Runs inbound messages through a bot's active flow and keeps the
    conversation's variable context and history in MongoDB.
    """

    def __init__(self, history_max: int):
        self.history_max = history_max

    async def get_or_create(self, bot_id: str, session_id: str) -> Conversation:
        document = await db_service.find_conversation(bot_id, session_id)
        if document is None:
            return Conversation(bot_id=bot_id, session_id=session_id)
        return Conversation.from_document(document)

    async def process_turn(self, bot_id: str, session_id: str, text: str) -> FlowExecutionResult:
        """
        Process one user message.

        Bots without an active flow answer with the fallback message and keep
        their variables unchanged.
        """
        conversation = await self.get_or_create(bot_id, session_id)
        flow = await flow_service.get_active_flow(bot_id)

        if flow is None:
            logger.warning(f"Bot {bot_id} has no active flow; sending fallback message")
            result: FlowExecutionResult = {
                "response": strings.FALLBACK_MESSAGE,
                "variables": dict(conversation.variables),
                "actions": []
            }
        else:
            result = await flow_service.execute_flow(flow, text, conversation.variables)
            conversation.flow_version = flow.version

        conversation.messages.append(ConversationMessage(role=MessageRole.USER, text=text))
        conversation.messages.append(ConversationMessage(
            role=MessageRole.BOT,
            text=result["response"],
            meta={"actions": [action.model_dump() for action in result["actions"]]}
        ))
        if len(conversation.messages) > self.history_max:
            conversation.messages = conversation.messages[-self.history_max:]

        conversation.variables = result["variables"]
        conversation.updated_at = datetime.utcnow()
        await db_service.save_conversation(conversation.to_document())
        return result


# Globally accessible instance
conversation_service = ConversationService(settings.conversation_history_max)
