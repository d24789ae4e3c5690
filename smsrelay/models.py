"""Shared data model for the SMS relay."""
from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

__all__ = [
    "AttemptOutcome",
    "Classification",
    "Decision",
    "DeliveryAttempt",
    "DeliveryPayload",
    "EncryptedEnvelope",
    "InboundMessage",
    "MatchedRule",
]

IV_SIZE = 16
MAX_DISPLAY_NAME = 50
MAX_MESSAGE_BODY = 500


@dataclass(frozen=True)
class InboundMessage:
    """Text message as handed over by the platform receiver."""

    sender: Optional[str]
    body: Optional[str]
    received_at: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))


class Decision(str, Enum):
    FORWARD = "forward"
    DROP = "drop"


class MatchedRule(str, Enum):
    FORWARD_ALL = "forward_all"
    IMPORTANT_SENDER = "important_sender"
    IMPORTANT_KEYWORD = "important_keyword"
    NUMERIC_CODE = "numeric_code"
    SPAM_KEYWORD = "spam_keyword"
    DEFAULT = "default"


@dataclass(frozen=True)
class Classification:
    """Forward/drop verdict and the rule that produced it."""

    decision: Decision
    matched_rule: MatchedRule

    @property
    def forward(self) -> bool:
        return self.decision is Decision.FORWARD

    def as_dict(self) -> dict[str, str]:
        return {"decision": self.decision.value, "matched_rule": self.matched_rule.value}


@dataclass(frozen=True)
class DeliveryPayload:
    """Fields that end up inside the encrypted envelope."""

    display_name: str
    message_body: str
    device_label: str

    @classmethod
    def build(cls, display_name: Optional[str], message_body: Optional[str], device_label: str) -> "DeliveryPayload":
        """Apply the length limits and trimming used on the wire."""

        name = (display_name or "Unknown")[:MAX_DISPLAY_NAME]
        body = (message_body or "")[:MAX_MESSAGE_BODY].strip()
        return cls(display_name=name, message_body=body, device_label=device_label)

    def plaintext(self) -> str:
        return "|".join([self.display_name, self.message_body, self.device_label])


@dataclass(frozen=True)
class EncryptedEnvelope:
    """IV-prefixed AES-CBC ciphertext."""

    iv: bytes
    ciphertext: bytes

    def serialize(self) -> str:
        """Render as ``base64(iv || ciphertext)``, standard alphabet, unwrapped."""

        return base64.b64encode(self.iv + self.ciphertext).decode("ascii")

    @classmethod
    def parse(cls, encoded: str) -> "EncryptedEnvelope":
        """Inverse of :meth:`serialize`; raises ``ValueError`` on malformed input."""

        try:
            combined = base64.b64decode(encoded.strip(), validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValueError("Envelope is not valid base64") from exc
        if len(combined) < IV_SIZE:
            raise ValueError("Envelope is shorter than the IV")
        return cls(iv=combined[:IV_SIZE], ciphertext=combined[IV_SIZE:])


class AttemptOutcome(str, Enum):
    SUCCESS = "success"
    RETRYABLE_FAILURE = "retryable_failure"
    FATAL_FAILURE = "fatal_failure"


@dataclass(frozen=True)
class DeliveryAttempt:
    """Record of a single POST to the relay."""

    attempt_number: int
    outcome: AttemptOutcome
    cause: Optional[str] = None

    def as_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "attempt_number": self.attempt_number,
            "outcome": self.outcome.value,
        }
        if self.cause is not None:
            payload["cause"] = self.cause
        return payload
