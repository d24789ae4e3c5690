"""smsrelay exports."""

from .crypto import CipherError, DecryptionError, EncryptionError, MessageCipher
from .delivery import (
    ConfigurationError,
    DeliveryError,
    DeliveryPipeline,
    DeliveryReport,
    ExhaustedRetriesError,
    MalformedRequestError,
    RelayTarget,
    TransportError,
)
from .filters import ClassificationEngine, FilterConfig, FilterConfigError
from .logbook import EventLog, LogEntry, LogLevel
from .models import (
    AttemptOutcome,
    Classification,
    Decision,
    DeliveryAttempt,
    DeliveryPayload,
    EncryptedEnvelope,
    InboundMessage,
    MatchedRule,
)
from .relay import SmsRelay

__all__ = [
    "AttemptOutcome",
    "CipherError",
    "Classification",
    "ClassificationEngine",
    "ConfigurationError",
    "Decision",
    "DecryptionError",
    "DeliveryAttempt",
    "DeliveryError",
    "DeliveryPayload",
    "DeliveryPipeline",
    "DeliveryReport",
    "EncryptedEnvelope",
    "EncryptionError",
    "EventLog",
    "ExhaustedRetriesError",
    "FilterConfig",
    "FilterConfigError",
    "InboundMessage",
    "LogEntry",
    "LogLevel",
    "MalformedRequestError",
    "MatchedRule",
    "MessageCipher",
    "RelayTarget",
    "SmsRelay",
    "TransportError",
]
