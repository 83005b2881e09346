# /botrix/services/flow_service.py

import logging
from datetime import datetime
from typing import Any, List, Mapping, Optional, Sequence, Union

import httpx

from botrix.config.settings import settings
from botrix.flows import engine, validator
from botrix.flows.definitions import DEFAULT_NODES
from botrix.models.flow import BotFlow, FlowConnection, FlowGraph, FlowNode, Variable
from botrix.services.db_service import db_service
from botrix.utils.metrics import flow_validation_counter

logger = logging.getLogger(__name__)


class FlowNotFoundError(LookupError):
    """Raised when a bot has no flow to update or toggle."""

    def __init__(self, bot_id: str):
        super().__init__(f"Flow not found for bot {bot_id}")
        self.bot_id = bot_id


class BotBuilderService:
    """
    Manages versioned bot flows and runs conversation turns against them.

    Flows are append-only: every update inserts a new BotFlow document with
    version + 1. Toggling activation is the only in-place change.
    """

    def __init__(self):
        self.http_client = httpx.AsyncClient(timeout=settings.api_call_timeout_seconds)

    # ==================== Defaults ====================

    @staticmethod
    def get_default_nodes() -> List[FlowNode]:
        return [FlowNode.model_validate(node) for node in DEFAULT_NODES]

    # ==================== Persistence ====================

    async def create_flow(
        self,
        bot_id: str,
        nodes: Optional[List[FlowNode]] = None,
        connections: Optional[List[FlowConnection]] = None,
        variables: Optional[List[Variable]] = None
    ) -> BotFlow:
        """Create version 1 of a bot's flow, inactive, with the default skeleton when no nodes are given."""
        flow = BotFlow(
            bot_id=bot_id,
            nodes=nodes or self.get_default_nodes(),
            connections=connections or [],
            variables=variables or [],
            is_active=False,
            version=1
        )
        flow.id = await db_service.insert_flow(flow.to_document())
        logger.info(f"Created flow v1 for bot {bot_id}")
        return flow

    async def get_flow(self, bot_id: str) -> Optional[BotFlow]:
        """Return the highest version of the bot's flow, or None."""
        document = await db_service.find_latest_flow(bot_id)
        return BotFlow.from_document(document) if document else None

    async def get_active_flow(self, bot_id: str) -> Optional[BotFlow]:
        """Return the highest active version of the bot's flow, or None."""
        document = await db_service.find_latest_flow(bot_id, active_only=True)
        return BotFlow.from_document(document) if document else None

    async def update_flow(
        self,
        bot_id: str,
        nodes: Optional[List[FlowNode]] = None,
        connections: Optional[List[FlowConnection]] = None,
        variables: Optional[List[Variable]] = None,
        is_active: Optional[bool] = None
    ) -> BotFlow:
        """
        Save an edit as a new version. Fields that are not given are carried
        over from the current version.

        Raises:
            FlowNotFoundError: if the bot has no flow yet
        """
        existing = await self.get_flow(bot_id)
        if existing is None:
            raise FlowNotFoundError(bot_id)

        new_flow = BotFlow(
            bot_id=bot_id,
            nodes=nodes if nodes is not None else existing.nodes,
            connections=connections if connections is not None else existing.connections,
            variables=variables if variables is not None else existing.variables,
            is_active=is_active if is_active is not None else existing.is_active,
            version=existing.version + 1
        )
        new_flow.id = await db_service.insert_flow(new_flow.to_document())
        # The new version decides whether the bot is live; older versions never stay active
        await db_service.set_flow_active(new_flow.id, bot_id, new_flow.is_active, new_flow.updated_at)
        logger.info(f"Saved flow v{new_flow.version} for bot {bot_id}")
        return new_flow

    async def toggle_flow(self, bot_id: str, is_active: bool) -> BotFlow:
        """
        Activate or deactivate the current version in place. Older versions
        are always left inactive, so at most one version is live.

        Raises:
            FlowNotFoundError: if the bot has no flow yet
        """
        flow = await self.get_flow(bot_id)
        if flow is None:
            raise FlowNotFoundError(bot_id)

        now = datetime.utcnow()
        await db_service.set_flow_active(flow.id, bot_id, is_active, now)
        flow.is_active = is_active
        flow.updated_at = now
        logger.info(f"Flow v{flow.version} for bot {bot_id} is now {'active' if is_active else 'inactive'}")
        return flow

    async def delete_flows(self, bot_id: str) -> int:
        """Delete every version of the bot's flow. Returns the number of deleted documents."""
        deleted = await db_service.delete_flows(bot_id)
        logger.info(f"Deleted {deleted} flow version(s) for bot {bot_id}")
        return deleted

    # ==================== Validation & Execution ====================

    def validate_flow(
        self,
        nodes: Sequence[FlowNode],
        connections: Sequence[FlowConnection]
    ) -> validator.FlowValidationResult:
        result = validator.validate_flow(nodes, connections)
        flow_validation_counter.labels(result="valid" if result["valid"] else "invalid").inc()
        return result

    async def execute_flow(
        self,
        flow: Union[FlowGraph, BotFlow],
        user_input: str,
        context: Optional[Mapping[str, Any]] = None
    ) -> engine.FlowExecutionResult:
        return await engine.execute_flow(flow, user_input, context, http_client=self.http_client)

    async def close(self):
        await self.http_client.aclose()


# Globally accessible instance
flow_service = BotBuilderService()
