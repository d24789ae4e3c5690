"""File-backed stores for filter rules and relay credentials."""
from __future__ import annotations

import base64
import hashlib
import json
import logging
from pathlib import Path
from threading import RLock
from typing import Dict, Iterable, Optional

from cryptography.fernet import Fernet, InvalidToken
from pydantic import ValidationError

from .filters import FilterConfig, FilterConfigError, validate_otp_pattern

logger = logging.getLogger(__name__)

_FILTER_KEYS = ("important_senders", "important_keywords", "spam_keywords", "otp_pattern", "forward_all")


class FilterConfigStore:
    """Persist customised filter rules; unset rules fall back to defaults.

    Every :meth:`get` re-reads the file so edits made between messages are
    picked up. OTP patterns are validated here, on write.
    """

    def __init__(self, storage_path: Path) -> None:
        self._storage_path = storage_path
        self._lock = RLock()

    # ------------------------------------------------------------------
    # Persistence helpers
    def _read(self) -> Dict[str, object]:
        if not self._storage_path.exists():
            return {}
        try:
            data = json.loads(self._storage_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable filter settings %s: %s", self._storage_path, exc)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring malformed filter settings %s", self._storage_path)
            return {}
        return {key: value for key, value in data.items() if key in _FILTER_KEYS}

    def _write(self, data: Dict[str, object]) -> None:
        self._storage_path.parent.mkdir(parents=True, exist_ok=True)
        self._storage_path.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")

    def _update(self, key: str, value: object) -> None:
        with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)

    # ------------------------------------------------------------------
    # Reads
    def get(self) -> FilterConfig:
        with self._lock:
            data = self._read()
        valid: Dict[str, object] = {}
        for key, value in data.items():
            try:
                FilterConfig(**{key: value})
            except ValidationError as exc:
                logger.warning("Ignoring invalid stored filter setting %s, using its default: %s", key, exc)
                continue
            valid[key] = value
        return FilterConfig(**valid)

    def is_customized(self) -> bool:
        with self._lock:
            return bool(self._read())

    # ------------------------------------------------------------------
    # Writes
    def save_important_senders(self, senders: Iterable[str]) -> None:
        self._update("important_senders", _clean(senders))

    def save_important_keywords(self, keywords: Iterable[str]) -> None:
        self._update("important_keywords", _clean(keywords))

    def save_spam_keywords(self, keywords: Iterable[str]) -> None:
        self._update("spam_keywords", _clean(keywords))

    def save_otp_pattern(self, pattern: str) -> None:
        pattern = pattern.strip()
        if not pattern:
            raise FilterConfigError("OTP pattern must not be empty")
        validate_otp_pattern(pattern)
        self._update("otp_pattern", pattern)

    def save_forward_all(self, forward_all: bool) -> None:
        self._update("forward_all", bool(forward_all))

    def save(self, config: FilterConfig) -> None:
        with self._lock:
            self._write(
                {
                    "important_senders": sorted(config.important_senders),
                    "important_keywords": sorted(config.important_keywords),
                    "spam_keywords": sorted(config.spam_keywords),
                    "otp_pattern": config.otp_pattern,
                    "forward_all": config.forward_all,
                }
            )

    def reset_to_defaults(self) -> None:
        with self._lock:
            if self._storage_path.exists():
                self._storage_path.unlink()


def _clean(terms: Iterable[str]) -> list[str]:
    return sorted({term.strip() for term in terms if term and term.strip()})


def _derive_fernet_key(secret: str) -> bytes:
    """Return a valid Fernet key from an arbitrary secret string."""

    if not secret:
        raise ValueError("SMSRELAY_SECRET_KEY must not be empty")

    try:
        decoded = base64.urlsafe_b64decode(secret)
        if len(decoded) == 32:
            return base64.urlsafe_b64encode(decoded)
    except ValueError:
        pass

    digest = hashlib.sha256(secret.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest)


class CredentialStore:
    """Relay topic and encryption password, encrypted at rest."""

    _TOPIC = "topic"
    _PASSWORD = "password"

    def __init__(self, secret: str, storage_path: Path) -> None:
        self._fernet = Fernet(_derive_fernet_key(secret))
        self._storage_path = storage_path
        self._lock = RLock()
        self._values: Dict[str, str] = {}
        self._load()

    def _load(self) -> None:
        if not self._storage_path.exists():
            return
        try:
            payload = self._fernet.decrypt(self._storage_path.read_bytes())
        except (InvalidToken, ValueError):
            raise RuntimeError(
                "Unable to decrypt credential store. Ensure SMSRELAY_SECRET_KEY matches the original value."
            )
        self._values = {key: str(value) for key, value in json.loads(payload.decode("utf-8")).items()}

    def _persist(self) -> None:
        payload = json.dumps(self._values, separators=(",", ":")).encode("utf-8")
        self._storage_path.parent.mkdir(parents=True, exist_ok=True)
        self._storage_path.write_bytes(self._fernet.encrypt(payload))

    def _set(self, key: str, value: Optional[str]) -> None:
        with self._lock:
            if value and value.strip():
                self._values[key] = value.strip() if key == self._TOPIC else value
            else:
                self._values.pop(key, None)
            self._persist()

    def get_topic(self) -> Optional[str]:
        with self._lock:
            return self._values.get(self._TOPIC)

    def get_password(self) -> Optional[str]:
        with self._lock:
            return self._values.get(self._PASSWORD)

    def save_topic(self, topic: Optional[str]) -> None:
        self._set(self._TOPIC, topic)

    def save_password(self, password: Optional[str]) -> None:
        self._set(self._PASSWORD, password)

    def is_configured(self) -> bool:
        return bool(self.get_topic() and self.get_password())

    def masked_topic(self) -> Optional[str]:
        topic = self.get_topic()
        return mask_topic(topic) if topic else None


def mask_topic(topic: str) -> str:
    """Hide all but the first and last two characters of ``topic``."""

    if len(topic) <= 4:
        return "*" * len(topic)
    return topic[:2] + "*" * (len(topic) - 4) + topic[-2:]


__all__ = ["CredentialStore", "FilterConfigStore", "mask_topic"]
