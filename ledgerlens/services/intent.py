from __future__ import annotations

import asyncio
import logging
import re
import string
from datetime import date

from ledgerlens.agent.prompts import build_classify_messages
from ledgerlens.core.config import get_settings
from ledgerlens.core.errors import ClassificationAmbiguous
from ledgerlens.domain.state import ConversationTurn, Intent

logger = logging.getLogger(__name__)

_SUMMARY_HINTS = (
    "this month",
    "monthly",
    "how is the month",
    "how's the month",
    "month going",
    "summary",
    "pace",
    "forecast",
    "last month",
    "previous month",
)
_MONTHS = {
    name: index
    for index, names in enumerate(
        [
            ("january", "jan"), ("february", "feb"), ("march", "mar"), ("april", "apr"),
            ("may",), ("june", "jun"), ("july", "jul"), ("august", "aug"),
            ("september", "sep", "sept"), ("october", "oct"), ("november", "nov"), ("december", "dec"),
        ],
        start=1,
    )
    for name in names
}
_MONTH_NAME = re.compile(r"\b(" + "|".join(sorted(_MONTHS, key=len, reverse=True)) + r")\b(?:\s+(\d{4}))?", re.IGNORECASE)
_ISO_PERIOD = re.compile(r"\b(\d{4})-(\d{1,2})\b")


def parse_intent(raw: str) -> Intent:
    # Only the first token counts; surrounding prose from the model is ignored.
    tokens = (raw or "").strip().split()
    if not tokens:
        raise ClassificationAmbiguous("empty classification")
    label = tokens[0].strip(string.punctuation.replace("_", "")).upper()
    try:
        return Intent(label)
    except ValueError as exc:
        raise ClassificationAmbiguous(f"unrecognized label: {label[:40]}") from exc


async def classify(question: str, recent_turns: list[ConversationTurn], llm) -> Intent:
    settings = get_settings()
    window = recent_turns[-settings.router_history_turns:] if settings.router_history_turns > 0 else []
    messages = build_classify_messages(question, window, settings.router_turn_chars)
    raw = await asyncio.to_thread(llm.complete, messages)
    try:
        intent = parse_intent(raw)
    except ClassificationAmbiguous as exc:
        logger.warning("intent_ambiguous detail=%s default=%s", exc, Intent.CONVERSATION.value)
        return Intent.CONVERSATION
    logger.info("intent_classified intent=%s", intent.value)
    return intent


def looks_like_monthly_summary(question: str) -> bool:
    lowered = (question or "").lower()
    return any(hint in lowered for hint in _SUMMARY_HINTS)


def _previous(year: int, month: int) -> tuple[int, int]:
    return (year - 1, 12) if month == 1 else (year, month - 1)


def extract_period(question: str, today: date) -> tuple[int, int]:
    lowered = (question or "").lower()
    if "last month" in lowered or "previous month" in lowered:
        return _previous(today.year, today.month)
    iso = _ISO_PERIOD.search(lowered)
    if iso and 1 <= int(iso.group(2)) <= 12:
        return int(iso.group(1)), int(iso.group(2))
    for named in _MONTH_NAME.finditer(lowered):
        name, year = named.group(1).lower(), named.group(2)
        # "may" is only a month when a year pins it down.
        if name == "may" and not year:
            continue
        month = _MONTHS[name]
        if year:
            return int(year), month
        # A month later than the current one without a year refers to last year.
        return (today.year - 1, month) if month > today.month else (today.year, month)
    return today.year, today.month
