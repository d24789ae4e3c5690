"""Rule-based forward/drop classification for inbound messages."""
from __future__ import annotations

import re
from typing import FrozenSet, Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .models import Classification, Decision, MatchedRule

DEFAULT_IMPORTANT_SENDERS = (
    "bank", "delivery", "uber", "lyft", "amazon", "paypal", "venmo", "zelle",
    "doctor", "urgent", "security", "alert", "hdfc", "icici", "sbi", "axis",
    "kotak", "swiggy", "zomato", "flipkart", "myntra", "ola",
)

DEFAULT_IMPORTANT_KEYWORDS = (
    "urgent", "important", "delivery", "otp", "code", "verification", "security",
    "alert", "confirm", "expires", "deadline", "delivered", "transaction",
    "payment", "credited", "debited", "balance", "debit", "credit", "login", "log on",
)

DEFAULT_SPAM_KEYWORDS = (
    "offer", "discount", "sale", "promo", "unsubscribe", "marketing",
    "advertisement", "free", "win", "prize", "cashback", "rewards", "lucky", "congratulations",
)

DEFAULT_OTP_PATTERN = r"\b\d{4,8}\b"


class FilterConfigError(ValueError):
    """Raised when a filter configuration cannot be used."""


class FilterConfig(BaseModel):
    """Rule sets consulted by :class:`ClassificationEngine`."""

    model_config = ConfigDict(frozen=True)

    important_senders: FrozenSet[str] = Field(default_factory=lambda: frozenset(DEFAULT_IMPORTANT_SENDERS))
    important_keywords: FrozenSet[str] = Field(default_factory=lambda: frozenset(DEFAULT_IMPORTANT_KEYWORDS))
    spam_keywords: FrozenSet[str] = Field(default_factory=lambda: frozenset(DEFAULT_SPAM_KEYWORDS))
    otp_pattern: str = DEFAULT_OTP_PATTERN
    forward_all: bool = False

    @field_validator("important_senders", "important_keywords", "spam_keywords", mode="before")
    @classmethod
    def _clean_terms(cls, value):
        if isinstance(value, str):
            value = value.split(",")
        if not isinstance(value, (list, tuple, set, frozenset)):
            raise ValueError("expected a list of terms")
        if not all(isinstance(term, str) for term in value):
            raise ValueError("terms must be strings")
        return frozenset(term.strip() for term in value if term.strip())

    @field_validator("otp_pattern")
    @classmethod
    def _compile_pattern(cls, value: str) -> str:
        validate_otp_pattern(value)
        return value


def validate_otp_pattern(pattern: str) -> None:
    """Reject patterns that ``re`` cannot compile."""

    try:
        re.compile(pattern)
    except re.error as exc:
        raise FilterConfigError(f"Invalid OTP pattern {pattern!r}: {exc}") from exc


class ClassificationEngine:
    """Maps a message and a :class:`FilterConfig` to a forward/drop decision.

    Rules are evaluated in a fixed priority order and the first match wins:
    forward-all, important sender, important keyword, numeric code, spam
    keyword, default drop. The engine keeps no state between calls.
    """

    def classify(self, sender: Optional[str], body: Optional[str], config: FilterConfig) -> Classification:
        if not sender or not body:
            return Classification(Decision.DROP, MatchedRule.DEFAULT)

        sender_lower = sender.lower()
        body_lower = body.lower()

        if config.forward_all:
            return Classification(Decision.FORWARD, MatchedRule.FORWARD_ALL)
        if _contains_any(sender_lower, config.important_senders):
            return Classification(Decision.FORWARD, MatchedRule.IMPORTANT_SENDER)
        if _contains_any(body_lower, config.important_keywords):
            return Classification(Decision.FORWARD, MatchedRule.IMPORTANT_KEYWORD)
        if _matches_code(body, config.otp_pattern):
            return Classification(Decision.FORWARD, MatchedRule.NUMERIC_CODE)
        if _contains_any(body_lower, config.spam_keywords):
            return Classification(Decision.DROP, MatchedRule.SPAM_KEYWORD)
        return Classification(Decision.DROP, MatchedRule.DEFAULT)


def classify(sender: Optional[str], body: Optional[str], config: FilterConfig) -> Classification:
    return ClassificationEngine().classify(sender, body, config)


def _contains_any(text: str, terms: Iterable[str]) -> bool:
    return any(term and term.lower() in text for term in terms)


def _matches_code(body: str, pattern: str) -> bool:
    try:
        compiled = re.compile(pattern)
    except re.error as exc:
        # Patterns are validated on write; reaching this means the store was bypassed.
        raise FilterConfigError(f"OTP pattern failed to compile: {exc}") from exc
    return compiled.search(body) is not None


__all__ = [
    "ClassificationEngine",
    "DEFAULT_IMPORTANT_KEYWORDS",
    "DEFAULT_IMPORTANT_SENDERS",
    "DEFAULT_OTP_PATTERN",
    "DEFAULT_SPAM_KEYWORDS",
    "FilterConfig",
    "FilterConfigError",
    "classify",
    "validate_otp_pattern",
]
