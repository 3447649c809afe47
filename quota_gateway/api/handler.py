"""
Request handler.

Orchestrates one chat request:

    validate -> admit -> allocate -> complete -> commit -> respond

Denied requests stop after admission and upstream failures stop before
commit, so in both cases the stored usage is left untouched.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

from ..config.loader import GatewayConfig
from ..core.budget import allocate_output_tokens
from ..core.day_key import DayKeyDeriver
from ..core.errors import GatewayError, QuotaExceeded, ValidationError
from ..core.ledger import QuotaLedger
from ..log import get_logger
from ..sdk.openai_client import CompletionGateway
from ..storage.repository import StorageHandle

logger = get_logger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@]+@[^@]+\.[^@]+$")
ALLOWED_METHODS = "POST, OPTIONS"


@dataclass
class GatewayResponse:
    """Transport-neutral response."""
    status_code: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[Dict[str, Any]] = None

    def json(self) -> str:
        """Serialized body, empty for bodiless responses."""
        if self.body is None:
            return ""
        return json.dumps(self.body)


def parse_request(body: Union[str, bytes, None]) -> Tuple[str, List[Dict[str, Any]]]:
    """Decode and validate a chat request body.

    Returns:
        The email and message list

    Raises:
        ValidationError: If the body is not valid JSON or fails validation
    """
    if isinstance(body, bytes):
        try:
            body = body.decode("utf-8")
        except UnicodeDecodeError:
            raise ValidationError("Request body must be UTF-8 JSON.")
    try:
        data = json.loads(body or "{}")
    except json.JSONDecodeError:
        raise ValidationError("Request body must be valid JSON.")
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object.")

    email = data.get("email")
    if not isinstance(email, str) or not EMAIL_PATTERN.match(email.strip()):
        raise ValidationError("Valid email is required.")

    messages = data.get("messages")
    if not isinstance(messages, list) or not messages:
        raise ValidationError("messages[] is required.")
    for message in messages:
        if not isinstance(message, dict):
            raise ValidationError("Each message must be an object.")
        role = message.get("role")
        if not isinstance(role, str) or not role.strip():
            raise ValidationError("Each message needs a role.")
        # None is valid for assistant tool-call turns; lists are content parts
        if not isinstance(message.get("content"), (str, list, type(None))):
            raise ValidationError("Message content must be a string or a list of parts.")

    return email.strip(), [dict(m) for m in messages]


class RequestHandler:
    """Handles chat requests against an injected store and gateway."""

    def __init__(
        self,
        config: GatewayConfig,
        storage: StorageHandle,
        gateway: CompletionGateway,
        deriver: Optional[DayKeyDeriver] = None
    ):
        self.config = config
        self.storage = storage
        self.gateway = gateway
        self.ledger = QuotaLedger(
            storage.store,
            config.daily_limit,
            deriver or DayKeyDeriver(config.timezone)
        )

    def cors_headers(self) -> Dict[str, str]:
        return {
            "Access-Control-Allow-Origin": self.config.allowed_origin,
            "Access-Control-Allow-Methods": ALLOWED_METHODS,
            "Access-Control-Allow-Headers": "Content-Type",
        }

    def _respond(self, status_code: int, body: Optional[Dict[str, Any]] = None,
                 headers: Optional[Dict[str, str]] = None) -> GatewayResponse:
        all_headers = self.cors_headers()
        if body is not None:
            all_headers["Content-Type"] = "application/json"
        all_headers.update(headers or {})
        return GatewayResponse(status_code, all_headers, body)

    def handle(self, method: str, body: Union[str, bytes, None] = None) -> GatewayResponse:
        """Handle one request and return its response."""
        method = (method or "").upper()
        if method == "OPTIONS":
            return self._respond(204)
        if method != "POST":
            return self._respond(405, {"error": "Method Not Allowed"}, {"Allow": ALLOWED_METHODS})

        try:
            return self._respond(200, self._chat(body))
        except GatewayError as e:
            return self._respond(e.status_code, e.to_body())
        except Exception:
            logger.exception("Unhandled error while serving chat request")
            return self._respond(500, {"error": "Server error. Please try again."})

    def _chat(self, body: Union[str, bytes, None]) -> Dict[str, Any]:
        email, messages = parse_request(body)
        self.gateway.ensure_configured()

        admission = self.ledger.admit(email)
        if not admission.allowed:
            raise QuotaExceeded()

        max_tokens = allocate_output_tokens(admission.usage, self.config.daily_limit)
        result = self.gateway.complete(messages, max_tokens)

        merged = self.ledger.commit(admission, result.prompt_tokens, result.completion_tokens)
        logger.debug("Charged %s %d tokens on %s (%d used)",
                     email, result.total_tokens, admission.day_key, merged.total_tokens)

        return {
            "reply": result.reply,
            "usage": {
                "input_tokens": result.prompt_tokens,
                "output_tokens": result.completion_tokens,
                "total_tokens": result.total_tokens,
                "used_today": merged.total_tokens,
                "remaining_today": self.ledger.remaining(merged),
            },
            "storage": self.storage.backend.value,
        }
