"""User-agent based bot classification."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Final

BOT_NAME_PATTERNS: Final[tuple[tuple[str, re.Pattern[str]], ...]] = (
    ("Googlebot", re.compile(r"googlebot", re.IGNORECASE)),
    ("Bingbot", re.compile(r"bingbot|bingpreview", re.IGNORECASE)),
    ("YandexBot", re.compile(r"yandex(bot)?", re.IGNORECASE)),
    ("DuckDuckBot", re.compile(r"duckduckbot", re.IGNORECASE)),
    ("Baiduspider", re.compile(r"baiduspider", re.IGNORECASE)),
    ("SemrushBot", re.compile(r"semrushbot", re.IGNORECASE)),
    ("AhrefsBot", re.compile(r"ahrefsbot", re.IGNORECASE)),
    ("Applebot", re.compile(r"applebot", re.IGNORECASE)),
    ("Meta Bot", re.compile(r"facebookexternalhit|facebot", re.IGNORECASE)),
    ("Twitter Bot", re.compile(r"twitterbot", re.IGNORECASE)),
    ("Telegram Bot", re.compile(r"telegrambot", re.IGNORECASE)),
    ("Discord Bot", re.compile(r"discordbot", re.IGNORECASE)),
    ("Crawler", re.compile(r"\b(bot|crawler|spider|crawl|slurp)\b", re.IGNORECASE)),
    (
        "Scripted Client",
        re.compile(r"\b(curl|wget|python-requests|axios|scrapy|httpclient)\b", re.IGNORECASE),
    ),
)

MOBILE_PATTERN: Final = re.compile(
    r"Android|iPhone|iPad|iPod|webOS|BlackBerry|IEMobile|Opera Mini", re.IGNORECASE
)

CONFIDENCE_EMPTY_AGENT = 0.1
CONFIDENCE_AGENT_MATCH = 0.86
CONFIDENCE_HUMAN = 0.78
CONFIDENCE_PROVIDER_CRAWLER = 0.95


@dataclass(frozen=True)
class VisitorClassification:
    """Bot/human verdict attached to audit and analytics records."""

    is_bot: bool
    bot_name: str | None
    reason: str
    confidence: float

    @property
    def visitor_kind(self) -> str:
        return "bot" if self.is_bot else "human"

    def as_dict(self) -> dict[str, Any]:
        return {
            "isBot": self.is_bot,
            "botName": self.bot_name,
            "botReason": self.reason,
            "botConfidence": self.confidence,
            "visitorKind": self.visitor_kind,
        }


def detect_bot_from_user_agent(user_agent: str | None) -> VisitorClassification:
    normalized = (user_agent or "").strip()
    if not normalized:
        return VisitorClassification(False, None, "user-agent-empty", CONFIDENCE_EMPTY_AGENT)

    for bot_name, pattern in BOT_NAME_PATTERNS:
        if pattern.search(normalized):
            return VisitorClassification(True, bot_name, f"ua-match:{bot_name}", CONFIDENCE_AGENT_MATCH)

    return VisitorClassification(False, None, "ua-looks-human", CONFIDENCE_HUMAN)


def classify_visitor(
    user_agent: str | None, provider_crawler: bool, source: str | None = None
) -> VisitorClassification:
    """Combine the provider crawler signal with the user-agent match.

    A provider-reported crawler always wins and keeps the user-agent bot name
    when there is one.
    """
    detection = detect_bot_from_user_agent(user_agent)
    if not provider_crawler:
        return detection
    return VisitorClassification(
        is_bot=True,
        bot_name=detection.bot_name or "Network Crawler",
        reason=f"ip-intelligence:{source or 'unknown'}",
        confidence=CONFIDENCE_PROVIDER_CRAWLER,
    )


def device_type(user_agent: str | None) -> str:
    if not user_agent:
        return "unknown"
    return "mobile" if MOBILE_PATTERN.search(user_agent) else "desktop"
