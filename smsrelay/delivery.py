"""Encrypted relay delivery with bounded retries."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Union

import httpx

from .crypto import EncryptionError, MessageCipher
from .device import resolve_device_label
from .logbook import LogLevel, LogSink
from .models import AttemptOutcome, DeliveryAttempt, DeliveryPayload, InboundMessage
from .notify import NotificationSink
from .scheduler import InlineScheduler, RetryScheduler, ThreadingScheduler

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://ntfy.sh"
DEFAULT_USER_AGENT = "SMSSyncer/1.0"
DEFAULT_TIMEOUT = 15.0
MAX_ATTEMPTS = 3
BACKOFF_STEP_MS = 1000
BACKOFF_CAP_MS = 5000


class DeliveryError(RuntimeError):
    """Base error for relay delivery failures."""


class ConfigurationError(DeliveryError):
    """Raised when the topic or password is missing."""


class TransportError(DeliveryError):
    """Raised for timeouts, connection failures and non-200 responses."""


class MalformedRequestError(DeliveryError):
    """Raised when the relay request cannot be built, e.g. an unusable topic."""


class ExhaustedRetriesError(DeliveryError):
    """Raised once every attempt has failed."""


@dataclass(frozen=True)
class RelayTarget:
    """Where and how a message is relayed."""

    topic: Optional[str]
    password: Optional[str]
    endpoint_base: str = DEFAULT_ENDPOINT

    def url(self) -> str:
        return f"{self.endpoint_base.rstrip('/')}/{self.topic}"

    def __repr__(self) -> str:
        return f"RelayTarget(topic={self.topic!r}, endpoint_base={self.endpoint_base!r})"


@dataclass
class DeliveryReport:
    """Attempts made for one message and the terminal error, if any."""

    attempts: List[DeliveryAttempt] = field(default_factory=list)
    error: Optional[Exception] = None

    @property
    def delivered(self) -> bool:
        return bool(self.attempts) and self.attempts[-1].outcome is AttemptOutcome.SUCCESS


def backoff_delay(attempt_number: int) -> float:
    """Seconds to wait after failed attempt ``attempt_number``."""

    return min(BACKOFF_STEP_MS * attempt_number, BACKOFF_CAP_MS) / 1000.0


class DeliveryPipeline:
    """Assembles, encrypts and POSTs a forwarded message to the relay.

    ``deliver`` hands the whole job to the scheduler and returns at once.
    Outcomes are visible only through the log sink and the notification
    sink. Missing credentials abort with a warning and no notification.
    An encryption failure is reported and never retried. Transport failures
    are retried up to ``max_attempts`` times with a linear backoff capped at
    five seconds.
    """

    def __init__(
        self,
        *,
        log: LogSink,
        notifier: NotificationSink,
        cipher: Optional[MessageCipher] = None,
        scheduler: Optional[RetryScheduler] = None,
        transport: Optional[httpx.BaseTransport] = None,
        device_label: Union[str, Callable[[], str], None] = None,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout: float = DEFAULT_TIMEOUT,
        max_attempts: int = MAX_ATTEMPTS,
    ) -> None:
        if not 1 <= max_attempts <= MAX_ATTEMPTS:
            raise ValueError(f"max_attempts must be between 1 and {MAX_ATTEMPTS}")
        self._log = log
        self._notifier = notifier
        self._cipher = cipher or MessageCipher()
        self._scheduler = scheduler or ThreadingScheduler()
        self._transport = transport
        self._device_label = device_label
        self._user_agent = user_agent
        self._timeout = httpx.Timeout(timeout)
        self._max_attempts = max_attempts

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def deliver(self, inbound: InboundMessage, display_name: str, target: RelayTarget) -> None:
        report = DeliveryReport()
        self._scheduler.schedule(0.0, lambda: self._start(inbound, display_name, target, report, self._scheduler))

    def deliver_now(
        self,
        inbound: InboundMessage,
        display_name: str,
        target: RelayTarget,
        *,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> DeliveryReport:
        """Run the same delivery synchronously and return its report."""

        scheduler = InlineScheduler(sleep=sleep) if sleep is not None else InlineScheduler()
        report = DeliveryReport()
        self._start(inbound, display_name, target, report, scheduler)
        return report

    # ------------------------------------------------------------------
    # Delivery state machine
    # ------------------------------------------------------------------
    def _start(
        self,
        inbound: InboundMessage,
        display_name: str,
        target: RelayTarget,
        report: DeliveryReport,
        scheduler: RetryScheduler,
    ) -> None:
        try:
            self._check_target(target)
        except ConfigurationError as exc:
            report.error = exc
            self._log.append(LogLevel.WARNING, str(exc), "Message was not forwarded")
            return

        payload = DeliveryPayload.build(display_name, inbound.body, self._resolve_label())
        try:
            body = self._cipher.encrypt(payload.plaintext(), target.password or "").serialize()
        except EncryptionError as exc:
            report.error = exc
            self._log.append(LogLevel.ERROR, f"Failed to encrypt message from {payload.display_name}", str(exc))
            self._notifier.notify(
                False,
                "SMS forwarding error",
                f"Could not encrypt message from {payload.display_name}",
            )
            return

        headers = {
            "Content-Type": "text/plain",
            "User-Agent": self._user_agent,
            "Title": f"SMS from {payload.display_name}".encode("utf-8"),
            "Connection": "close",
        }
        self._attempt(1, target.url(), headers, body, payload, report, scheduler)

    def _attempt(
        self,
        attempt_number: int,
        url: str,
        headers: dict,
        body: str,
        payload: DeliveryPayload,
        report: DeliveryReport,
        scheduler: RetryScheduler,
    ) -> None:
        try:
            self._post(url, headers, body)
        except MalformedRequestError as exc:
            self._abort_malformed(attempt_number, exc, payload, report)
            return
        except TransportError as exc:
            self._record_failure(attempt_number, str(exc), url, headers, body, payload, report, scheduler)
            return

        report.attempts.append(DeliveryAttempt(attempt_number, AttemptOutcome.SUCCESS))
        logger.debug("Relayed message from %s on attempt %s", payload.display_name, attempt_number)
        self._notifier.notify(
            True,
            "SMS forwarded successfully",
            f"Message from {payload.display_name} relayed from {payload.device_label}",
        )

    def _abort_malformed(
        self,
        attempt_number: int,
        error: MalformedRequestError,
        payload: DeliveryPayload,
        report: DeliveryReport,
    ) -> None:
        # The same request would be rejected again, so this is never retried.
        report.attempts.append(DeliveryAttempt(attempt_number, AttemptOutcome.FATAL_FAILURE, str(error)))
        report.error = error
        self._log.append(LogLevel.ERROR, f"Could not build relay request for message from {payload.display_name}", str(error))
        self._notifier.notify(
            False,
            "SMS forwarding error",
            f"Invalid relay request for message from {payload.display_name}",
        )

    def _record_failure(
        self,
        attempt_number: int,
        cause: str,
        url: str,
        headers: dict,
        body: str,
        payload: DeliveryPayload,
        report: DeliveryReport,
        scheduler: RetryScheduler,
    ) -> None:
        if attempt_number < self._max_attempts:
            report.attempts.append(DeliveryAttempt(attempt_number, AttemptOutcome.RETRYABLE_FAILURE, cause))
            self._log.append(
                LogLevel.ERROR,
                f"Delivery attempt {attempt_number}/{self._max_attempts} failed",
                cause,
            )
            scheduler.schedule(
                backoff_delay(attempt_number),
                lambda: self._attempt(attempt_number + 1, url, headers, body, payload, report, scheduler),
            )
            return

        # The final attempt's entry doubles as the summary of the whole delivery.
        report.attempts.append(DeliveryAttempt(attempt_number, AttemptOutcome.FATAL_FAILURE, cause))
        causes = "; ".join(f"#{item.attempt_number}: {item.cause}" for item in report.attempts)
        error = ExhaustedRetriesError(f"Giving up on message from {payload.display_name} after {attempt_number} attempts")
        report.error = error
        self._log.append(LogLevel.ERROR, str(error), causes)
        self._notifier.notify(
            False,
            "SMS forwarding failed",
            f"Failed to send message from {payload.display_name}",
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _post(self, url: str, headers: dict, body: str) -> None:
        with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
            try:
                request = client.build_request("POST", url, headers=headers, content=body.encode("ascii"))
            except (httpx.InvalidURL, ValueError, TypeError) as exc:
                raise MalformedRequestError(f"{type(exc).__name__}: {exc}") from exc
            try:
                response = client.send(request, stream=True)
                try:
                    if response.status_code != 200:
                        raise TransportError(f"Relay responded with HTTP {response.status_code}")
                    response.read()
                finally:
                    response.close()
            except (httpx.HTTPError, OSError) as exc:
                raise TransportError(f"{type(exc).__name__}: {exc}") from exc

    def _resolve_label(self) -> str:
        label = self._device_label
        if callable(label):
            try:
                return label() or resolve_device_label()
            except Exception as exc:  # noqa: BLE001 - label lookup never blocks delivery
                logger.debug("Custom device label lookup failed: %s", exc)
                return resolve_device_label()
        return resolve_device_label(override=label)

    @staticmethod
    def _check_target(target: RelayTarget) -> None:
        if not target.topic or not target.topic.strip():
            raise ConfigurationError("Relay topic is not configured")
        if not target.password:
            raise ConfigurationError("Encryption password is not configured")


__all__ = [
    "BACKOFF_CAP_MS",
    "ConfigurationError",
    "DEFAULT_ENDPOINT",
    "DEFAULT_TIMEOUT",
    "DEFAULT_USER_AGENT",
    "DeliveryError",
    "DeliveryPipeline",
    "DeliveryReport",
    "ExhaustedRetriesError",
    "MAX_ATTEMPTS",
    "MalformedRequestError",
    "RelayTarget",
    "TransportError",
    "backoff_delay",
]
