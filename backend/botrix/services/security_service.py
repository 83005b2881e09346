# /botrix/services/security_service.py

import copy
import hashlib
import hmac
import logging
import re
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, TypedDict
from urllib.parse import urlparse

import httpx

from botrix.config import strings
from botrix.config.settings import settings
from botrix.utils.rate_limiter import WebhookRateLimiter, webhook_rate_limiter

logger = logging.getLogger(__name__)

# This service secures the webhook channel between Botrix and customer
# endpoints: HMAC signatures with a timestamp, origin allow-listing, per-bot
# rate limiting, payload validation/sanitisation and outbound URL checks.

USER_AGENT = "Botrix-Webhook-Service/1.0"
TEST_USER_AGENT = "Botrix-Webhook-Test/1.0"

_SCRIPT_TAG = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
_JAVASCRIPT_SCHEME = re.compile(r"javascript:", re.IGNORECASE)
_INLINE_HANDLER = re.compile(r"on\w+\s*=", re.IGNORECASE)
_SUSPICIOUS_URL_PATTERNS = [
    re.compile(r"\.(exe|bat|cmd|com|pif|scr|vbs|js)$", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"data:", re.IGNORECASE),
    re.compile(r"vbscript:", re.IGNORECASE),
]
_UNSAFE_KEYS = ("__proto__", "constructor", "prototype")
_LOCAL_HOSTS = ("localhost", "127.0.0.1")


class CheckResult(TypedDict):
    valid: bool
    error: Optional[str]


class WebhookTestResult(TypedDict):
    success: bool
    status_code: Optional[int]
    response_time_ms: Optional[int]
    error: Optional[str]


def _ok() -> CheckResult:
    return {"valid": True, "error": None}


def _fail(error: str) -> CheckResult:
    return {"valid": False, "error": error}


def _non_empty_string(value: Any) -> bool:
    return isinstance(value, str) and bool(value)


class WebhookSecurityService:
    def __init__(
        self,
        secret_key: str,
        signature_header: str = "x-webhook-signature",
        timestamp_header: str = "x-webhook-timestamp",
        max_age_seconds: int = 300,
        allowed_origins: Optional[List[str]] = None,
        rate_limiter: Optional[WebhookRateLimiter] = None
    ):
        self.secret_key = secret_key
        self.signature_header = signature_header
        self.timestamp_header = timestamp_header
        self.max_age_seconds = max_age_seconds
        self.allowed_origins = allowed_origins if allowed_origins is not None else ["*"]
        self.rate_limiter = rate_limiter or WebhookRateLimiter()

    # --- Signatures ---

    def generate_signature(self, payload: str, timestamp: int) -> str:
        data = f"{timestamp}.{payload}".encode("utf-8")
        return hmac.new(self.secret_key.encode("utf-8"), data, hashlib.sha256).hexdigest()

    def verify_signature(self, headers: Mapping[str, str], payload: str) -> bool:
        """
        Checks the signature and timestamp headers of an inbound webhook.
        Never raises: any malformed input is a failed verification.
        """
        signature = headers.get(self.signature_header)
        timestamp = headers.get(self.timestamp_header)

        if not signature or not timestamp:
            logger.warning("Missing webhook signature or timestamp")
            return False

        try:
            timestamp_num = int(timestamp)
        except ValueError:
            logger.warning(f"Invalid webhook timestamp: {timestamp!r}")
            return False

        age = int(time.time()) - timestamp_num
        if age > self.max_age_seconds:
            logger.warning(f"Webhook too old: {age}s > {self.max_age_seconds}s")
            return False

        expected = self.generate_signature(payload, timestamp_num)
        try:
            is_valid = hmac.compare_digest(signature.encode("ascii"), expected.encode("ascii"))
        except UnicodeEncodeError:
            is_valid = False

        if not is_valid:
            logger.warning("Invalid webhook signature")
        return is_valid

    def create_secure_headers(self, payload: str) -> Dict[str, str]:
        """Headers for an outbound webhook request carrying `payload`."""
        timestamp = int(time.time())
        return {
            self.signature_header: self.generate_signature(payload, timestamp),
            self.timestamp_header: str(timestamp),
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
        }

    # --- Origins & rate limits ---

    def validate_origin(self, headers: Mapping[str, str]) -> bool:
        origin = headers.get("origin") or headers.get("referer")
        if not origin:
            return True
        if "*" in self.allowed_origins:
            return True

        hostname = urlparse(origin).hostname
        if not hostname:
            return False

        for allowed in self.allowed_origins:
            if allowed.startswith("*."):
                domain = allowed[2:]
                if hostname == domain or hostname.endswith(f".{domain}"):
                    return True
            elif hostname == allowed:
                return True
        return False

    def is_rate_limited(self, bot_id: str, limit: int = 100, window_seconds: int = 60) -> bool:
        return self.rate_limiter.is_rate_limited(bot_id, limit=limit, window_seconds=window_seconds)

    # --- Payloads ---

    @staticmethod
    def validate_payload(payload: Any) -> CheckResult:
        if not payload:
            return _fail("Empty payload")
        if not isinstance(payload, dict):
            return _fail("Payload must be an object")

        content = payload.get("content")
        content = content if isinstance(content, dict) else {}
        if payload.get("type") == "text" and not _non_empty_string(content.get("text")):
            return _fail("Text payload must contain content.text")
        if payload.get("type") == "file" and not _non_empty_string(content.get("url")):
            return _fail("File payload must contain content.url")
        return _ok()

    @staticmethod
    def sanitize_payload(payload: Any) -> Any:
        """
        Returns a sanitised copy of the payload; the input is not modified.
        Non-dict payloads are returned unchanged.
        """
        if not isinstance(payload, dict):
            return payload

        sanitized = copy.deepcopy(payload)
        for key in _UNSAFE_KEYS:
            sanitized.pop(key, None)

        content = sanitized.get("content")
        if isinstance(content, dict):
            text = content.get("text")
            if isinstance(text, str):
                text = _SCRIPT_TAG.sub("", text)
                text = _JAVASCRIPT_SCHEME.sub("", text)
                content["text"] = _INLINE_HANDLER.sub("", text)

            url = content.get("url")
            if isinstance(url, str) and urlparse(url).scheme not in ("http", "https"):
                del content["url"]

        return sanitized

    # --- Outbound URLs ---

    @staticmethod
    def validate_webhook_url(url: str) -> CheckResult:
        try:
            parsed = urlparse(url)
        except ValueError:
            return _fail("Invalid webhook URL format")

        if parsed.scheme not in ("http", "https") or not parsed.hostname:
            return _fail("Webhook URL must use HTTP or HTTPS")
        if parsed.hostname in _LOCAL_HOSTS:
            return _fail("Local webhook URLs are not allowed")
        if any(pattern.search(url) for pattern in _SUSPICIOUS_URL_PATTERNS):
            return _fail("Webhook URL contains suspicious content")
        return _ok()

    async def test_webhook(self, url: str, timeout: float = 10.0) -> WebhookTestResult:
        """POSTs a test message to `url` and reports how the endpoint answered."""
        payload = {
            "type": "test",
            "content": {"text": strings.WEBHOOK_TEST_TEXT},
            "timestamp": datetime.now(timezone.utc).isoformat()
        }
        headers = {"Content-Type": "application/json", "User-Agent": TEST_USER_AGENT}
        started = time.monotonic()
        try:
            async with httpx.AsyncClient(timeout=timeout) as client:
                response = await client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.warning(f"Webhook test to {url} failed: {e}")
            return {"success": False, "status_code": None, "response_time_ms": None, "error": str(e) or type(e).__name__}

        return {
            "success": response.is_success,
            "status_code": response.status_code,
            "response_time_ms": int((time.monotonic() - started) * 1000),
            "error": None
        }


# Globally accessible instance
webhook_security_service = WebhookSecurityService(
    secret_key=settings.webhook_secret,
    signature_header=settings.webhook_signature_header,
    timestamp_header=settings.webhook_timestamp_header,
    max_age_seconds=settings.webhook_max_age_seconds,
    allowed_origins=settings.allowed_webhook_origins,
    rate_limiter=webhook_rate_limiter
)
