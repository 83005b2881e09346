# /botrix/utils/dependencies.py

import secrets
import structlog
from fastapi import Request, HTTPException

from botrix.config.settings import settings
from botrix.services.security_service import webhook_security_service
from botrix.utils.metrics import webhook_request_counter
from botrix.utils.request_utils import get_remote_address

log = structlog.get_logger(__name__)


async def verify_api_key(request: Request):
    """Guards management routes when an API key is configured."""
    if settings.api_key:
        provided_key = request.headers.get("X-API-KEY")
        if not (provided_key and secrets.compare_digest(provided_key, settings.api_key)):
            log.warning("Rejected request with invalid API key.", client=get_remote_address(request))
            raise HTTPException(status_code=403, detail="Invalid or missing API key")


async def verify_webhook_request(request: Request) -> bytes:
    """
    Checks origin and signature of an inbound bot webhook and returns the raw body.
    Rate limiting and payload checks happen in the route, once the bot id is known.
    """
    if not webhook_security_service.validate_origin(request.headers):
        webhook_request_counter.labels(status="forbidden_origin").inc()
        log.warning("Webhook origin not allowed.", origin=request.headers.get("origin"))
        raise HTTPException(status_code=403, detail="Origin not allowed")

    body = await request.body()
    if not webhook_security_service.verify_signature(request.headers, body.decode("utf-8", errors="replace")):
        webhook_request_counter.labels(status="invalid_signature").inc()
        log.error("Invalid webhook signature.", client=get_remote_address(request))
        raise HTTPException(status_code=403, detail="Invalid signature")
    return body
