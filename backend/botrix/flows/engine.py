# /botrix/flows/engine.py

"""
Flow interpreter: runs one conversation turn against a flow.

A turn starts at the `start` node and follows the first outgoing connection
of every visited node until no connection (or no target node) is left.
Each node produces a NodeResult; the turn folds them together:
- variables: merged in visiting order, later writes win
- actions: concatenated in visiting order
- response: the response of the LAST visited node only

Only the last node's text reaches the user. Earlier nodes contribute their
variable writes and actions. Condition nodes report their outcome as text
but do not choose an outgoing connection.

Side-effect actions are reported, never performed. The only I/O is the HTTP
request made by `api_call` nodes, and its failures are turned into a
response string.
"""

import json
import logging
import re
from contextlib import nullcontext
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Mapping, Optional, Sequence, TypedDict, Union

import httpx

from botrix.config import strings
from botrix.config.settings import settings
from botrix.models.flow import (
    Action,
    BotFlow,
    Condition,
    ConditionOperator,
    FlowGraph,
    FlowNode,
    NodeType,
    START_NODE_ID,
)
from botrix.utils.metrics import api_call_counter, flow_node_counter, flow_turn_counter

logger = logging.getLogger(__name__)

_VARIABLE_PATTERN = re.compile(r"\{\{(\w+)\}\}", re.ASCII)
_LEADING_NUMBER = re.compile(r"^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")


class NodeResult(TypedDict):
    """Output of a single node: its text, the variables it wrote and the actions it requested."""
    response: str
    variables: Dict[str, Any]
    actions: List[Action]


class FlowExecutionResult(TypedDict):
    """Output of a whole turn."""
    response: str
    variables: Dict[str, Any]
    actions: List[Action]


NodeHandler = Callable[[FlowNode, str, Dict[str, Any], Optional[httpx.AsyncClient]], Awaitable[NodeResult]]


# ==================== Templates & Conditions ====================

def _is_bound(variables: Mapping[str, Any], name: str) -> bool:
    return name in variables and variables[name] is not None


def to_text(value: Any) -> str:
    """Render a variable value the way it is shown to end users."""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)


def interpolate_variables(text: str, variables: Mapping[str, Any]) -> str:
    """
    Replace every {{name}} token with the bound value of `name`.

    Unbound names (missing or None) are left as the literal token.
    """
    def replace(match: re.Match) -> str:
        name = match.group(1)
        if _is_bound(variables, name):
            return to_text(variables[name])
        return match.group(0)

    return _VARIABLE_PATTERN.sub(replace, text or "")


def parse_number(text: str) -> Optional[float]:
    """Parse the leading number of `text` ("12abc" -> 12.0); None when there is none."""
    match = _LEADING_NUMBER.match(text)
    if not match:
        return None
    return float(match.group(1))


def evaluate_condition(condition: Condition, user_input: str, variables: Mapping[str, Any]) -> bool:
    if _is_bound(variables, condition.field):
        value = to_text(variables[condition.field])
    else:
        value = to_text(user_input) if user_input is not None else ""
    expected = condition.value or ""

    operator = condition.operator
    if operator == ConditionOperator.EQUALS:
        return value == expected
    if operator == ConditionOperator.CONTAINS:
        return expected.lower() in value.lower()
    if operator == ConditionOperator.STARTS_WITH:
        return value.lower().startswith(expected.lower())
    if operator == ConditionOperator.ENDS_WITH:
        return value.lower().endswith(expected.lower())
    if operator in (ConditionOperator.GREATER_THAN, ConditionOperator.LESS_THAN):
        left, right = parse_number(value), parse_number(expected)
        if left is None or right is None:
            return False
        return left > right if operator == ConditionOperator.GREATER_THAN else left < right
    return False


def evaluate_conditions(conditions: Sequence[Condition], user_input: str, variables: Mapping[str, Any]) -> bool:
    """All conditions must hold. An empty list holds."""
    return all(evaluate_condition(condition, user_input, variables) for condition in conditions)


# ==================== Node Handlers ====================

def _result(response: str, variables: Optional[Dict[str, Any]] = None, actions: Optional[List[Action]] = None) -> NodeResult:
    return {"response": response, "variables": variables or {}, "actions": actions or []}


async def _execute_message(
    node: FlowNode,
    user_input: str,
    variables: Dict[str, Any],
    http_client: Optional[httpx.AsyncClient]
) -> NodeResult:
    return _result(interpolate_variables(node.data.content, variables))


async def _execute_condition(
    node: FlowNode,
    user_input: str,
    variables: Dict[str, Any],
    http_client: Optional[httpx.AsyncClient]
) -> NodeResult:
    met = evaluate_conditions(node.data.conditions or [], user_input, variables)
    return _result(strings.CONDITION_MET if met else strings.CONDITION_NOT_MET)


async def _execute_action(
    node: FlowNode,
    user_input: str,
    variables: Dict[str, Any],
    http_client: Optional[httpx.AsyncClient]
) -> NodeResult:
    actions = [action.model_copy(deep=True) for action in node.data.actions or []]
    return _result(strings.ACTION_EXECUTED, actions=actions)


async def _execute_input(
    node: FlowNode,
    user_input: str,
    variables: Dict[str, Any],
    http_client: Optional[httpx.AsyncClient]
) -> NodeResult:
    updates: Dict[str, Any] = {}
    if node.data.variable:
        updates[node.data.variable] = user_input
    content = interpolate_variables(node.data.content, {**variables, **updates})
    return _result(content, variables=updates)


async def _execute_api_call(
    node: FlowNode,
    user_input: str,
    variables: Dict[str, Any],
    http_client: Optional[httpx.AsyncClient]
) -> NodeResult:
    data = node.data
    url = interpolate_variables(data.api_url or "", variables)
    method = (data.api_method or "GET").upper()
    headers = {"Content-Type": "application/json", **(data.api_headers or {})}

    client_context = (
        nullcontext(http_client) if http_client is not None
        else httpx.AsyncClient(timeout=settings.api_call_timeout_seconds)
    )
    try:
        async with client_context as client:
            response = await client.request(method, url, headers=headers, timeout=settings.api_call_timeout_seconds)
        response.raise_for_status()
        payload = response.json()
    except Exception as e:
        logger.warning(f"api_call node '{node.id}' failed for {method} {url}: {e}")
        api_call_counter.labels(status="failed").inc()
        return _result(strings.API_CALL_FAILED)

    api_call_counter.labels(status="success").inc()
    updates = {data.variable: payload} if data.variable else {}
    return _result(strings.API_CALL_SUCCESSFUL, variables=updates)


async def _execute_unhandled(
    node: FlowNode,
    user_input: str,
    variables: Dict[str, Any],
    http_client: Optional[httpx.AsyncClient]
) -> NodeResult:
    # TODO: decide whether handover should emit a hand-off action instead of the generic error.
    logger.warning(f"No handler for node '{node.id}' of type '{node.type}'")
    return _result(strings.NODE_ERROR_RESPONSE)


# Every NodeType has an entry; handover is explicitly unhandled.
NODE_HANDLERS: Dict[NodeType, NodeHandler] = {
    NodeType.MESSAGE: _execute_message,
    NodeType.QUESTION: _execute_message,
    NodeType.CONDITION: _execute_condition,
    NodeType.ACTION: _execute_action,
    NodeType.INPUT: _execute_input,
    NodeType.API_CALL: _execute_api_call,
    NodeType.HANDOVER: _execute_unhandled,
}


async def execute_node(
    node: FlowNode,
    user_input: str,
    variables: Dict[str, Any],
    http_client: Optional[httpx.AsyncClient] = None
) -> NodeResult:
    """
    Execute a single node against the current variables.

    The variables mapping is read, never modified; writes are returned in
    NodeResult["variables"].
    """
    try:
        handler = NODE_HANDLERS[NodeType(node.type)]
    except ValueError:
        handler = _execute_unhandled
    flow_node_counter.labels(node_type=node.type).inc()
    return await handler(node, user_input, variables, http_client)


# ==================== Traversal ====================

def walk_flow(flow: Union[FlowGraph, BotFlow]) -> Iterator[FlowNode]:
    """
    Yield the nodes a turn visits, starting at `start`.

    From each node the first connection whose source is that node is taken.
    The walk stops when there is no such connection or its target does not
    exist. It is lazy and does not guard against cycles.
    """
    nodes_by_id: Dict[str, FlowNode] = {}
    for node in flow.nodes:
        nodes_by_id.setdefault(node.id, node)

    current = nodes_by_id.get(START_NODE_ID)
    while current is not None:
        yield current
        next_connection = next((conn for conn in flow.connections if conn.source == current.id), None)
        current = nodes_by_id.get(next_connection.target) if next_connection else None


def _fold(turn: FlowExecutionResult, node_result: NodeResult) -> FlowExecutionResult:
    return {
        "response": node_result["response"],
        "variables": {**turn["variables"], **node_result["variables"]},
        "actions": turn["actions"] + node_result["actions"],
    }


async def execute_flow(
    flow: Union[FlowGraph, BotFlow],
    user_input: str,
    context: Optional[Mapping[str, Any]] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    max_steps: Optional[int] = None
) -> FlowExecutionResult:
    """
    Run one conversation turn.

    Args:
        flow: Any object with `nodes` and `connections` (FlowGraph or BotFlow)
        user_input: The user's utterance for this turn
        context: Current variable bindings; copied, never mutated
        http_client: Optional shared client for api_call nodes
        max_steps: Upper bound on visited nodes (defaults to settings.flow_max_steps)

    Returns:
        FlowExecutionResult with the last node's response, the merged
        variables and all requested actions
    """
    variables = dict(context or {})
    limit = max_steps if max_steps is not None else settings.flow_max_steps

    if not any(node.id == START_NODE_ID for node in flow.nodes):
        logger.error("Flow has no start node; returning the error response")
        flow_turn_counter.labels(status="no_start_node").inc()
        return {"response": strings.FLOW_ERROR_RESPONSE, "variables": variables, "actions": []}

    turn: FlowExecutionResult = {"response": "", "variables": variables, "actions": []}
    status = "completed"
    for step, node in enumerate(walk_flow(flow)):
        if step >= limit:
            logger.warning(f"Flow traversal stopped after {limit} nodes at '{node.id}'")
            status = "step_limit"
            break
        node_result = await execute_node(node, user_input, turn["variables"], http_client)
        turn = _fold(turn, node_result)

    flow_turn_counter.labels(status=status).inc()
    return turn
