# /botrix/routes/flows.py

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from botrix.config.settings import settings
from botrix.models.api import (
    APIResponse,
    FlowCreateRequest,
    FlowOut,
    FlowStatusRequest,
    FlowTestRequest,
    FlowUpdateRequest,
    FlowValidateRequest,
)
from botrix.services.flow_service import flow_service
from botrix.utils.dependencies import verify_api_key

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/bots/{bot_id}/flow",
    tags=["Flows"],
    dependencies=[Depends(verify_api_key)]
)


def _flow_response(message: str, flow) -> APIResponse:
    return APIResponse(
        success=True,
        message=message,
        data={"flow": FlowOut.from_flow(flow).to_data()},
        version=settings.api_version
    )


async def _require_flow(bot_id: str):
    flow = await flow_service.get_flow(bot_id)
    if flow is None:
        raise HTTPException(status_code=404, detail="Flow not found")
    return flow


@router.get("", response_model=APIResponse)
async def get_flow(bot_id: str):
    """Get the current (highest version) flow of a bot."""
    flow = await _require_flow(bot_id)
    return _flow_response("Flow retrieved", flow)


@router.post("", response_model=APIResponse, status_code=201)
async def create_flow(bot_id: str, request: Optional[FlowCreateRequest] = None):
    """Create the first version of a bot's flow. Without nodes, the default skeleton is used."""
    if await flow_service.get_flow(bot_id) is not None:
        raise HTTPException(status_code=409, detail="Flow already exists; use PUT to save a new version")
    request = request or FlowCreateRequest()
    flow = await flow_service.create_flow(
        bot_id,
        nodes=request.nodes,
        connections=request.connections,
        variables=request.variables
    )
    return _flow_response("Flow created", flow)


@router.put("", response_model=APIResponse)
async def update_flow(bot_id: str, request: FlowUpdateRequest):
    """Save an edit as a new flow version."""
    current = await _require_flow(bot_id)
    # An omitted isActive keeps the current activation
    goes_live = request.is_active if request.is_active is not None else current.is_active
    if goes_live:
        # A version must not go live unless it validates
        nodes = request.nodes if request.nodes is not None else current.nodes
        connections = request.connections if request.connections is not None else current.connections
        _ensure_valid(flow_service.validate_flow(nodes, connections))
    flow = await flow_service.update_flow(
        bot_id,
        nodes=request.nodes,
        connections=request.connections,
        variables=request.variables,
        is_active=request.is_active
    )
    return _flow_response(f"Flow saved as version {flow.version}", flow)


@router.put("/status", response_model=APIResponse)
async def set_flow_status(bot_id: str, request: FlowStatusRequest):
    """Activate or deactivate the current version. Activation requires a valid flow."""
    current = await _require_flow(bot_id)
    if request.is_active:
        _ensure_valid(flow_service.validate_flow(current.nodes, current.connections))
    flow = await flow_service.toggle_flow(bot_id, request.is_active)
    return _flow_response("Flow activated" if flow.is_active else "Flow deactivated", flow)


@router.post("/validate", response_model=APIResponse)
async def validate_flow(bot_id: str, request: Optional[FlowValidateRequest] = None):
    """Validate posted nodes/connections, or the current flow when none are posted."""
    if request is not None and request.nodes is not None:
        nodes, connections = request.nodes, request.connections or []
    else:
        current = await _require_flow(bot_id)
        nodes, connections = current.nodes, current.connections
    result = flow_service.validate_flow(nodes, connections)
    return APIResponse(
        success=True,
        message="Flow is valid" if result["valid"] else "Flow has errors",
        data=dict(result),
        version=settings.api_version
    )


@router.post("/test", response_model=APIResponse)
async def test_flow(bot_id: str, request: FlowTestRequest):
    """Run one turn against the current flow without touching any conversation."""
    flow = await _require_flow(bot_id)
    result = await flow_service.execute_flow(flow, request.message, request.context)
    return APIResponse(
        success=True,
        message="Flow executed",
        data={
            "response": result["response"],
            "variables": result["variables"],
            "actions": [action.model_dump(mode="json") for action in result["actions"]],
            "flowVersion": flow.version
        },
        version=settings.api_version
    )


@router.delete("", response_model=APIResponse)
async def delete_flow(bot_id: str):
    """Delete every version of a bot's flow."""
    deleted = await flow_service.delete_flows(bot_id)
    if deleted == 0:
        raise HTTPException(status_code=404, detail="Flow not found")
    return APIResponse(
        success=True,
        message="Flow deleted",
        data={"deleted": deleted},
        version=settings.api_version
    )


def _ensure_valid(result):
    if not result["valid"]:
        logger.info(f"Refusing to activate invalid flow: {result['errors']}")
        raise HTTPException(
            status_code=422,
            detail={"message": "Flow has validation errors", "errors": result["errors"], "warnings": result["warnings"]}
        )
