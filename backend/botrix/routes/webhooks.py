# /botrix/routes/webhooks.py

import json

import structlog
from fastapi import APIRouter, Depends, HTTPException

from botrix.config.settings import settings
from botrix.models.api import APIResponse, WebhookTestRequest
from botrix.services.conversation_service import conversation_service
from botrix.services.security_service import webhook_security_service
from botrix.utils.dependencies import verify_api_key, verify_webhook_request
from botrix.utils.metrics import webhook_request_counter

router = APIRouter(tags=["Webhooks"])
log = structlog.get_logger(__name__)


@router.post("/bots/{bot_id}/messages", response_model=APIResponse)
async def receive_bot_message(bot_id: str, body: bytes = Depends(verify_webhook_request)):
    """
    Inbound chat message for a bot. Expects a signed JSON body:
    {"type": "text", "sessionId": "...", "content": {"text": "..."}}
    """
    if webhook_security_service.is_rate_limited(
        bot_id,
        limit=settings.webhook_rate_limit,
        window_seconds=settings.webhook_rate_window_seconds
    ):
        webhook_request_counter.labels(status="rate_limited").inc()
        raise HTTPException(status_code=429, detail="Too many webhook requests for this bot")

    try:
        payload = json.loads(body)
    except ValueError:
        webhook_request_counter.labels(status="invalid_json").inc()
        raise HTTPException(status_code=400, detail="Body is not valid JSON")

    check = webhook_security_service.validate_payload(payload)
    if not check["valid"]:
        webhook_request_counter.labels(status="invalid_payload").inc()
        raise HTTPException(status_code=400, detail=check["error"])

    payload = webhook_security_service.sanitize_payload(payload)
    if payload.get("type") != "text":
        webhook_request_counter.labels(status="unsupported_type").inc()
        raise HTTPException(status_code=400, detail="Only text messages can be processed")

    session_id = payload.get("sessionId") or payload.get("session_id")
    if not session_id:
        webhook_request_counter.labels(status="invalid_payload").inc()
        raise HTTPException(status_code=400, detail="Payload must contain sessionId")

    result = await conversation_service.process_turn(bot_id, str(session_id), payload["content"]["text"])
    webhook_request_counter.labels(status="processed").inc()
    log.info("Webhook turn processed.", bot_id=bot_id, session_id=session_id, actions=len(result["actions"]))

    return APIResponse(
        success=True,
        message="Message processed",
        data={
            "response": result["response"],
            "actions": [action.model_dump(mode="json") for action in result["actions"]]
        },
        version=settings.api_version
    )


@router.post("/test", response_model=APIResponse, dependencies=[Depends(verify_api_key)])
async def test_webhook_url(request: WebhookTestRequest):
    """Check that a customer webhook URL is acceptable and reachable."""
    url = str(request.url)
    check = webhook_security_service.validate_webhook_url(url)
    if not check["valid"]:
        raise HTTPException(status_code=400, detail=check["error"])

    result = await webhook_security_service.test_webhook(url, timeout=settings.webhook_test_timeout_seconds)
    return APIResponse(
        success=result["success"],
        message="Webhook is responding correctly" if result["success"] else "Webhook test failed",
        data=dict(result),
        version=settings.api_version
    )
