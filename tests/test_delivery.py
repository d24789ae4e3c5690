from __future__ import annotations

import sys
from pathlib import Path
from typing import List

import httpx
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from smsrelay.crypto import EncryptionError, MessageCipher  # noqa: E402
from smsrelay.delivery import (  # noqa: E402
    ConfigurationError,
    DeliveryPipeline,
    ExhaustedRetriesError,
    MalformedRequestError,
    RelayTarget,
    backoff_delay,
)
from smsrelay.logbook import EventLog, LogLevel  # noqa: E402
from smsrelay.models import AttemptOutcome, InboundMessage  # noqa: E402
from smsrelay.scheduler import InlineScheduler, ThreadingScheduler  # noqa: E402


class RecordingNotifier:
    def __init__(self) -> None:
        self.calls: list[tuple[bool, str, str]] = []

    def notify(self, success: bool, title: str, body: str) -> None:
        self.calls.append((success, title, body))


class RelayStub:
    """Replays a fixed list of responses (status codes or exceptions)."""

    def __init__(self, *responses) -> None:
        self._responses = list(responses)
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        outcome = self._responses.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return httpx.Response(outcome, text="ok")


class FailingCipher(MessageCipher):
    def encrypt(self, plaintext: str, password: str):
        raise EncryptionError("cipher unavailable")


TARGET = RelayTarget(topic="my-topic", password="s3cret", endpoint_base="https://relay.example/")
MESSAGE = InboundMessage(sender="+15550001111", body="  Your OTP is 4821  ")


def build_pipeline(stub: RelayStub, **overrides):
    log = EventLog()
    notifier = RecordingNotifier()
    options = dict(
        log=log,
        notifier=notifier,
        transport=httpx.MockTransport(stub),
        device_label="Test Phone",
    )
    options.update(overrides)
    return DeliveryPipeline(**options), log, notifier


def test_successful_delivery_posts_encrypted_payload() -> None:
    stub = RelayStub(200)
    pipeline, log, notifier = build_pipeline(stub)

    report = pipeline.deliver_now(MESSAGE, "Mom", TARGET, sleep=lambda _: None)

    assert report.delivered is True
    assert [attempt.outcome for attempt in report.attempts] == [AttemptOutcome.SUCCESS]
    assert len(log) == 0
    assert notifier.calls == [(True, "SMS forwarded successfully", "Message from Mom relayed from Test Phone")]

    request = stub.requests[0]
    assert str(request.url) == "https://relay.example/my-topic"
    assert request.method == "POST"
    assert request.headers["Content-Type"] == "text/plain"
    assert request.headers["User-Agent"] == "SMSSyncer/1.0"
    assert request.headers["Title"] == "SMS from Mom"
    assert request.headers["Connection"] == "close"

    body = request.content.decode("ascii")
    assert MessageCipher().decrypt(body, "s3cret") == "Mom|Your OTP is 4821|Test Phone"


def test_payload_fields_are_truncated() -> None:
    stub = RelayStub(200)
    pipeline, _, _ = build_pipeline(stub)
    message = InboundMessage(sender="+1555", body="x" * 600)

    pipeline.deliver_now(message, "N" * 80, TARGET)

    plaintext = MessageCipher().decrypt(stub.requests[0].content.decode("ascii"), "s3cret")
    name, body, device = plaintext.split("|")
    assert name == "N" * 50
    assert body == "x" * 500
    assert device == "Test Phone"


def test_three_failures_exhaust_retries() -> None:
    stub = RelayStub(500, 502, 503)
    pipeline, log, notifier = build_pipeline(stub)
    delays: list[float] = []

    report = pipeline.deliver_now(MESSAGE, "Mom", TARGET, sleep=delays.append)

    assert len(stub.requests) == 3
    assert delays == [1.0, 2.0]
    assert [attempt.attempt_number for attempt in report.attempts] == [1, 2, 3]
    assert [attempt.outcome for attempt in report.attempts] == [
        AttemptOutcome.RETRYABLE_FAILURE,
        AttemptOutcome.RETRYABLE_FAILURE,
        AttemptOutcome.FATAL_FAILURE,
    ]
    assert isinstance(report.error, ExhaustedRetriesError)

    errors = log.entries(LogLevel.ERROR)
    assert len(errors) == 3
    assert len(log) == 3
    assert "HTTP 503" in (errors[0].details or "")
    assert "Delivery attempt 1/3 failed" == errors[-1].message
    assert notifier.calls == [(False, "SMS forwarding failed", "Failed to send message from Mom")]


def test_transport_error_then_success() -> None:
    stub = RelayStub(httpx.ConnectTimeout("timed out"), 200)
    pipeline, log, notifier = build_pipeline(stub)
    delays: list[float] = []

    report = pipeline.deliver_now(MESSAGE, "Mom", TARGET, sleep=delays.append)

    assert report.delivered is True
    assert delays == [1.0]
    assert [attempt.outcome for attempt in report.attempts] == [
        AttemptOutcome.RETRYABLE_FAILURE,
        AttemptOutcome.SUCCESS,
    ]
    assert "ConnectTimeout" in (log.entries()[0].details or "")
    assert notifier.calls[0][0] is True
    assert len(notifier.calls) == 1


@pytest.mark.parametrize(
    "target,message",
    [
        (RelayTarget(topic="my-topic", password=""), "Encryption password is not configured"),
        (RelayTarget(topic="my-topic", password=None), "Encryption password is not configured"),
        (RelayTarget(topic="", password="pw"), "Relay topic is not configured"),
        (RelayTarget(topic=None, password="pw"), "Relay topic is not configured"),
    ],
)
def test_missing_credentials_abort_without_network(target: RelayTarget, message: str) -> None:
    stub = RelayStub()
    pipeline, log, notifier = build_pipeline(stub)

    report = pipeline.deliver_now(MESSAGE, "Mom", target)

    assert stub.requests == []
    assert report.attempts == []
    assert isinstance(report.error, ConfigurationError)
    entries = log.entries()
    assert len(entries) == 1
    assert entries[0].level is LogLevel.WARNING
    assert entries[0].message == message
    assert notifier.calls == []


def test_encryption_failure_is_not_retried() -> None:
    stub = RelayStub()
    pipeline, log, notifier = build_pipeline(stub, cipher=FailingCipher())

    report = pipeline.deliver_now(MESSAGE, "Mom", TARGET)

    assert stub.requests == []
    assert isinstance(report.error, EncryptionError)
    assert [entry.level for entry in log.entries()] == [LogLevel.ERROR]
    assert notifier.calls == [(False, "SMS forwarding error", "Could not encrypt message from Mom")]


def test_unusable_topic_is_reported_without_retry() -> None:
    stub = RelayStub()
    pipeline, log, notifier = build_pipeline(stub)
    target = RelayTarget(topic="bad\x00topic", password="s3cret", endpoint_base="https://relay.example/")
    delays: list[float] = []

    report = pipeline.deliver_now(MESSAGE, "Mom", target, sleep=delays.append)

    assert stub.requests == []
    assert delays == []
    assert isinstance(report.error, MalformedRequestError)
    assert [attempt.outcome for attempt in report.attempts] == [AttemptOutcome.FATAL_FAILURE]
    assert [entry.level for entry in log.entries()] == [LogLevel.ERROR]
    assert notifier.calls == [(False, "SMS forwarding error", "Invalid relay request for message from Mom")]


def test_unusable_topic_on_worker_thread_still_notifies() -> None:
    scheduler = ThreadingScheduler()
    pipeline, log, notifier = build_pipeline(RelayStub(), scheduler=scheduler)
    target = RelayTarget(topic="bad\x00topic", password="s3cret")

    pipeline.deliver(MESSAGE, "Mom", target)
    scheduler.join()

    assert len(log.entries(LogLevel.ERROR)) == 1
    assert notifier.calls[0][:2] == (False, "SMS forwarding error")


def test_backoff_formula_is_capped() -> None:
    assert [backoff_delay(n) for n in range(1, 8)] == [1.0, 2.0, 3.0, 4.0, 5.0, 5.0, 5.0]


def test_device_label_source_failure_falls_back() -> None:
    def broken() -> str:
        raise RuntimeError("no settings provider")

    stub = RelayStub(200)
    pipeline, _, _ = build_pipeline(stub, device_label=broken)
    pipeline.deliver_now(MESSAGE, "Mom", TARGET)

    plaintext = MessageCipher().decrypt(stub.requests[0].content.decode("ascii"), "s3cret")
    assert plaintext.split("|")[2]


def test_deliver_hands_off_to_scheduler() -> None:
    scheduled: list[float] = []

    class DeferredScheduler:
        def __init__(self) -> None:
            self.callbacks = []

        def schedule(self, delay, callback):
            scheduled.append(delay)
            self.callbacks.append(callback)
            return self

        def cancel(self) -> None:
            return None

    scheduler = DeferredScheduler()
    stub = RelayStub(200)
    pipeline, _, notifier = build_pipeline(stub, scheduler=scheduler)

    assert pipeline.deliver(MESSAGE, "Mom", TARGET) is None
    assert stub.requests == []
    assert scheduled == [0.0]

    scheduler.callbacks.pop(0)()
    assert len(stub.requests) == 1
    assert notifier.calls[0][0] is True


def test_threaded_workers_share_log_safely() -> None:
    stub_responses = [500] * 20
    stub = RelayStub(*stub_responses)
    scheduler = ThreadingScheduler()
    pipeline, log, notifier = build_pipeline(stub, scheduler=scheduler, max_attempts=1)

    for index in range(20):
        pipeline.deliver(InboundMessage(sender=f"+1555{index}", body="code 1234"), f"Sender {index}", TARGET)
    scheduler.join()

    assert len(log.entries(LogLevel.ERROR)) == 20
    assert len(notifier.calls) == 20


def test_inline_scheduler_skips_zero_delay() -> None:
    delays: list[float] = []
    ran: list[int] = []
    scheduler = InlineScheduler(sleep=delays.append)
    scheduler.schedule(0.0, lambda: ran.append(1))
    scheduler.schedule(2.0, lambda: ran.append(2))
    assert ran == [1, 2]
    assert delays == [2.0]
