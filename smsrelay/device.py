"""Best-effort lookup of a human-readable label for this device."""
from __future__ import annotations

import logging
import os
import platform
import socket
from typing import Callable, Iterable, Optional, Sequence

logger = logging.getLogger(__name__)

UNKNOWN_DEVICE = "Unknown Device"

LabelSource = Callable[[], Optional[str]]


def _from_environment() -> Optional[str]:
    return os.environ.get("SMSRELAY_DEVICE_LABEL") or os.environ.get("DEVICE_NAME")


def _from_hostname() -> Optional[str]:
    return socket.gethostname()


def _from_node() -> Optional[str]:
    return platform.node()


def _hardware_model() -> Optional[str]:
    parts = [part for part in (platform.system(), platform.machine()) if part]
    return " ".join(parts) or None


DEFAULT_SOURCES: Sequence[LabelSource] = (_from_environment, _from_hostname, _from_node, _hardware_model)


def resolve_device_label(sources: Optional[Iterable[LabelSource]] = None, *, override: Optional[str] = None) -> str:
    """Return the first non-empty label from ``sources``.

    A source that raises is skipped; the chain always ends with
    ``"Unknown Device"``.
    """

    if override and override.strip():
        return override.strip()
    for source in sources if sources is not None else DEFAULT_SOURCES:
        try:
            label = source()
        except Exception as exc:  # noqa: BLE001 - any failing source falls through
            logger.debug("Device label source %s failed: %s", getattr(source, "__name__", source), exc)
            continue
        if label and label.strip():
            return label.strip()
    return UNKNOWN_DEVICE


__all__ = ["DEFAULT_SOURCES", "UNKNOWN_DEVICE", "resolve_device_label"]
