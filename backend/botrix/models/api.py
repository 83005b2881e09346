# /botrix/models/api.py

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, HttpUrl

from botrix.models.flow import BotFlow, FlowConnection, FlowModel, FlowNode, Variable

# This file contains Pydantic models that define the structure of data for
# API requests and responses, ensuring type safety and validation.


class APIResponse(BaseModel):
    success: bool
    message: str
    data: Optional[Dict] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    version: str


class FlowCreateRequest(FlowModel):
    nodes: Optional[List[FlowNode]] = None
    connections: Optional[List[FlowConnection]] = None
    variables: Optional[List[Variable]] = None


class FlowUpdateRequest(FlowModel):
    nodes: Optional[List[FlowNode]] = None
    connections: Optional[List[FlowConnection]] = None
    variables: Optional[List[Variable]] = None
    is_active: Optional[bool] = None


class FlowStatusRequest(FlowModel):
    is_active: bool


class FlowValidateRequest(FlowModel):
    """When nodes are omitted, the bot's current flow is validated."""
    nodes: Optional[List[FlowNode]] = None
    connections: Optional[List[FlowConnection]] = None


class FlowTestRequest(FlowModel):
    message: str = Field(..., max_length=4096)
    context: Dict[str, Any] = Field(default_factory=dict)


class WebhookTestRequest(BaseModel):
    url: HttpUrl


class FlowOut(FlowModel):
    """Wire representation of a stored flow (camelCase JSON)."""
    id: Optional[str] = None
    bot_id: str
    nodes: List[FlowNode]
    connections: List[FlowConnection]
    variables: List[Variable]
    is_active: bool
    version: int
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_flow(cls, flow: BotFlow) -> "FlowOut":
        return cls(
            id=flow.id,
            bot_id=flow.bot_id,
            nodes=flow.nodes,
            connections=flow.connections,
            variables=flow.variables,
            is_active=flow.is_active,
            version=flow.version,
            created_at=flow.created_at,
            updated_at=flow.updated_at
        )

    def to_data(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)
