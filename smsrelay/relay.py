"""Entry point that turns inbound text messages into relay deliveries."""
from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from .config import Settings
from .contacts import ContactResolver, display_name_for
from .delivery import DEFAULT_ENDPOINT, DeliveryPipeline, RelayTarget
from .filters import ClassificationEngine
from .logbook import EventLog
from .models import Classification, InboundMessage
from .notify import LoggingNotificationSink, NotificationSink
from .store import CredentialStore, FilterConfigStore

logger = logging.getLogger(__name__)


class SmsRelay:
    """Classify each inbound message and hand forwarded ones to the pipeline.

    The filter rules and credentials are read fresh for every message.
    :meth:`handle` never waits on the network.
    """

    def __init__(
        self,
        *,
        filters: FilterConfigStore,
        credentials: CredentialStore,
        pipeline: DeliveryPipeline,
        contacts: Optional[ContactResolver] = None,
        endpoint_base: str = DEFAULT_ENDPOINT,
        engine: Optional[ClassificationEngine] = None,
    ) -> None:
        self._filters = filters
        self._credentials = credentials
        self._pipeline = pipeline
        self._contacts = contacts
        self._endpoint_base = endpoint_base
        self._engine = engine or ClassificationEngine()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        notifier: Optional[NotificationSink] = None,
        contacts: Optional[ContactResolver] = None,
    ) -> "SmsRelay":
        if not settings.secret_key:
            raise ValueError("SMSRELAY_SECRET_KEY is required to open the credential store")
        log = EventLog(capacity=settings.log_capacity, storage_path=settings.log_path)
        pipeline = DeliveryPipeline(
            log=log,
            notifier=notifier or LoggingNotificationSink(),
            device_label=settings.device_label,
            user_agent=settings.user_agent,
            timeout=settings.request_timeout,
            max_attempts=settings.max_attempts,
        )
        return cls(
            filters=FilterConfigStore(settings.filters_path),
            credentials=CredentialStore(settings.secret_key, settings.credentials_path),
            pipeline=pipeline,
            contacts=contacts,
            endpoint_base=settings.endpoint_base,
        )

    def handle(self, message: InboundMessage) -> Classification:
        classification = self._engine.classify(message.sender, message.body, self._filters.get())
        logger.debug("Message classified as %s (%s)", classification.decision.value, classification.matched_rule.value)
        if not classification.forward:
            return classification

        display_name = display_name_for(self._contacts, message.sender)
        target = self._target()
        self._pipeline.deliver(message, display_name, target)
        return classification

    def handle_batch(self, messages: Iterable[InboundMessage]) -> List[Optional[Classification]]:
        """Handle several messages; one failing message does not stop the rest."""

        results: List[Optional[Classification]] = []
        for message in messages:
            try:
                results.append(self.handle(message))
            except Exception:  # noqa: BLE001 - the receiver must survive a bad message
                logger.exception("Failed to process inbound message")
                results.append(None)
        return results

    def _target(self) -> RelayTarget:
        return RelayTarget(
            topic=self._credentials.get_topic(),
            password=self._credentials.get_password(),
            endpoint_base=self._endpoint_base,
        )


__all__ = ["SmsRelay"]
