from __future__ import annotations

from dataclasses import dataclass
import time
from typing import Any

from chatdesk.domain.models import Tenant


REPLY_MODEL = "gpt-3.5-turbo"
REPLY_CONFIDENCE = 0.85
# Replies typed by an operator rather than generated.
MANUAL_REPLY_MODEL = "manual-reply"


@dataclass(frozen=True)
class Reply:
    content: str
    response_time_ms: int
    confidence: float

    def metadata(self) -> dict[str, Any]:
        return {
            "model": REPLY_MODEL,
            "response_time_ms": self.response_time_ms,
            "confidence": self.confidence,
        }


def manual_reply_metadata() -> dict[str, Any]:
    return {"model": MANUAL_REPLY_MODEL, "response_time_ms": 0}


def _matches(text: str, *keywords: str) -> bool:
    return any(keyword in text for keyword in keywords)


def generate_reply(tenant: Tenant, visitor_message: str) -> Reply:
    """Keyword responder that stands in for a language model provider."""
    started = time.perf_counter()
    welcome = (tenant.chatbot_config or {}).get("welcome_message") or (
        f"Hello! Welcome to {tenant.name}. How can I help you today?"
    )
    text = visitor_message.lower()
    domain = tenant.domain

    if _matches(text, "hello", "hi"):
        content = welcome
    elif _matches(text, "hours", "open"):
        content = (
            f"Our hours vary by location. Please visit our website at {domain} for specific hours, "
            "or let me know your location!"
        )
    elif _matches(text, "menu", "food"):
        content = (
            f"You can view our full menu on our website: {domain}/menu. "
            "Is there anything specific you'd like to know about?"
        )
    elif _matches(text, "book", "reservation"):
        content = (
            f"I'd be happy to help you make a reservation! Please visit {domain}/reservations "
            "or call us directly. What date were you thinking of?"
        )
    elif _matches(text, "location", "address"):
        content = f"You can find our location details on our website: {domain}/contact. Would you like directions?"
    else:
        content = (
            f"Thank you for your message! I'm here to help. For detailed information about {tenant.name}, "
            f"please visit our website at {domain}, or feel free to ask me anything!"
        )

    elapsed_ms = int((time.perf_counter() - started) * 1000)
    return Reply(content=content, response_time_ms=elapsed_ms, confidence=REPLY_CONFIDENCE)
