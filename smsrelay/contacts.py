"""Sender display-name resolution."""
from __future__ import annotations

import logging
import re
from typing import Dict, Mapping, Optional, Protocol

logger = logging.getLogger(__name__)

_NON_DIALABLE = re.compile(r"[^\d+]")
MIN_MATCH_DIGITS = 7


class ContactResolver(Protocol):
    def resolve(self, phone_number: str) -> Optional[str]:
        ...


def normalize_phone_number(phone_number: str) -> str:
    """Strip everything except digits and ``+``."""

    return _NON_DIALABLE.sub("", phone_number)


def numbers_match(left: str, right: str) -> bool:
    """Loose comparison that tolerates country prefixes and formatting."""

    # Leading zeros are trunk prefixes ("07700...") and never part of the subscriber number.
    left_digits = re.sub(r"\D", "", left).lstrip("0")
    right_digits = re.sub(r"\D", "", right).lstrip("0")
    if not left_digits or not right_digits:
        return False
    if left_digits == right_digits:
        return True
    overlap = min(len(left_digits), len(right_digits))
    if overlap < MIN_MATCH_DIGITS:
        return False
    return left_digits[-overlap:] == right_digits[-overlap:]


class StaticContactResolver:
    """Resolves numbers from an in-memory address book."""

    def __init__(self, contacts: Optional[Mapping[str, str]] = None) -> None:
        self._contacts: Dict[str, str] = {}
        for number, name in (contacts or {}).items():
            self.add(number, name)

    def add(self, phone_number: str, name: str) -> None:
        self._contacts[normalize_phone_number(phone_number)] = name

    def resolve(self, phone_number: str) -> Optional[str]:
        normalized = normalize_phone_number(phone_number)
        if not normalized:
            return None
        exact = self._contacts.get(normalized)
        if exact:
            return exact
        for number, name in self._contacts.items():
            if name and numbers_match(normalized, number):
                return name
        return None


def display_name_for(resolver: Optional[ContactResolver], sender: Optional[str]) -> str:
    """Contact name if known, else the raw sender, else ``"Unknown"``."""

    if not sender:
        return "Unknown"
    if resolver is None:
        return sender
    try:
        name = resolver.resolve(sender)
    except Exception as exc:  # noqa: BLE001 - lookup is best effort
        logger.warning("Contact lookup failed: %s", exc)
        return sender
    return name or sender


__all__ = [
    "ContactResolver",
    "StaticContactResolver",
    "display_name_for",
    "normalize_phone_number",
    "numbers_match",
]
