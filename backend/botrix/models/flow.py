# /botrix/models/flow.py

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class NodeType(str, Enum):
    """The closed set of node kinds a flow may contain."""
    MESSAGE = "message"
    QUESTION = "question"
    CONDITION = "condition"
    ACTION = "action"
    HANDOVER = "handover"
    INPUT = "input"
    API_CALL = "api_call"


class ConditionOperator(str, Enum):
    EQUALS = "equals"
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"


class ActionType(str, Enum):
    SET_VARIABLE = "set_variable"
    SEND_EMAIL = "send_email"
    WEBHOOK = "webhook"
    REDIRECT = "redirect"


class VariableType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    ARRAY = "array"
    OBJECT = "object"


START_NODE_ID = "start"


class FlowModel(BaseModel):
    """Base for flow models: snake_case attributes, camelCase JSON."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, use_enum_values=True)


class Position(FlowModel):
    x: float = 0
    y: float = 0


class NodeStyle(FlowModel):
    background_color: Optional[str] = None
    border_color: Optional[str] = None
    color: Optional[str] = None


class Condition(FlowModel):
    field: str = ""
    # Kept as a plain string: unknown operators evaluate to False instead of failing to parse.
    operator: str = ConditionOperator.EQUALS.value
    value: str = ""


class Action(FlowModel):
    """A side-effect request surfaced to the caller; the payload is opaque."""
    type: str
    data: Dict[str, Any] = Field(default_factory=dict)


class NodeData(FlowModel):
    title: str = ""
    content: str = ""
    options: Optional[List[str]] = None
    variable: Optional[str] = None
    api_url: Optional[str] = None
    api_method: Optional[str] = None
    api_headers: Optional[Dict[str, str]] = None
    conditions: Optional[List[Condition]] = None
    actions: Optional[List[Action]] = None


class FlowNode(FlowModel):
    """
    One step in a conversation flow.

    `type` is accepted as any string so that the validator, not the parser,
    reports unknown node kinds.
    """
    id: str
    type: str
    position: Position = Field(default_factory=Position)
    data: NodeData = Field(default_factory=NodeData)
    style: Optional[NodeStyle] = None


class ConnectionStyle(FlowModel):
    stroke: Optional[str] = None
    stroke_width: Optional[float] = None


class FlowConnection(FlowModel):
    id: str
    source: str
    target: str
    source_handle: Optional[str] = None
    target_handle: Optional[str] = None
    # Annotations only; traversal does not evaluate them.
    condition: Optional[str] = None
    label: Optional[str] = None
    style: Optional[ConnectionStyle] = None


class Variable(FlowModel):
    name: str
    type: VariableType
    default_value: Optional[Any] = None
    description: Optional[str] = None


class FlowGraph(FlowModel):
    """
    The executable part of a flow: nodes, connections and declared variables.
    Used for flows that are not (or not yet) persisted, e.g. in tests or
    validation requests.
    """
    nodes: List[FlowNode] = Field(default_factory=list)
    connections: List[FlowConnection] = Field(default_factory=list)
    variables: List[Variable] = Field(default_factory=list)


class BotFlow(BaseModel):
    """
    A persisted, versioned flow for one bot.

    Every edit inserts a new document with version + 1; the current flow of
    a bot is the one with the highest version. Documents are stored with
    snake_case keys in the `bot_flows` collection.
    """
    id: Optional[str] = None
    bot_id: str
    nodes: List[FlowNode] = Field(default_factory=list)
    connections: List[FlowConnection] = Field(default_factory=list)
    variables: List[Variable] = Field(default_factory=list)
    is_active: bool = False
    version: int = 1
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "BotFlow":
        data = dict(document)
        object_id = data.pop("_id", None)
        return cls.model_validate({**data, "id": str(object_id) if object_id is not None else None})

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(exclude={"id"})
