from __future__ import annotations

import sys
from pathlib import Path

import pytest
from pydantic import ValidationError

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from smsrelay.filters import ClassificationEngine, FilterConfig, FilterConfigError  # noqa: E402
from smsrelay.models import Classification, Decision, MatchedRule  # noqa: E402


def classify(sender, body, **overrides) -> Classification:
    return ClassificationEngine().classify(sender, body, FilterConfig(**overrides))


def test_default_sender_wins_over_numeric_code() -> None:
    result = classify("HDFC-Bank", "Your OTP is 4821")
    assert result == Classification(Decision.FORWARD, MatchedRule.IMPORTANT_SENDER)


def test_promotional_message_dropped_as_spam() -> None:
    result = classify("PromoCo", "Huge discount! 50% off, unsubscribe now")
    assert result == Classification(Decision.DROP, MatchedRule.SPAM_KEYWORD)


@pytest.mark.parametrize(
    "sender,body",
    [
        ("+15550001111", "hello there"),
        ("PromoCo", "Huge discount! Win a prize"),
        ("x", "y"),
    ],
)
def test_forward_all_forwards_everything(sender: str, body: str) -> None:
    result = classify(sender, body, forward_all=True)
    assert result.decision is Decision.FORWARD
    assert result.matched_rule is MatchedRule.FORWARD_ALL


@pytest.mark.parametrize("sender,body", [(None, "body"), ("", "body"), ("sender", None), ("sender", "")])
def test_missing_sender_or_body_is_dropped_without_rules(sender, body) -> None:
    result = classify(sender, body, forward_all=True)
    assert result == Classification(Decision.DROP, MatchedRule.DEFAULT)


def test_important_sender_is_case_insensitive_substring() -> None:
    result = classify("VM-ICICIBK", "see statement", important_senders={"IciCi"}, important_keywords=set())
    assert result.matched_rule is MatchedRule.IMPORTANT_SENDER


def test_important_keyword_beats_spam_keyword() -> None:
    result = classify(
        "+15550001111",
        "Payment received. Reply STOP to unsubscribe",
        important_senders=set(),
        important_keywords={"payment"},
        spam_keywords={"unsubscribe"},
    )
    assert result == Classification(Decision.FORWARD, MatchedRule.IMPORTANT_KEYWORD)


def test_numeric_code_matches_raw_body() -> None:
    result = classify(
        "+15550001111",
        "Use 993311 to sign in",
        important_senders=set(),
        important_keywords=set(),
    )
    assert result == Classification(Decision.FORWARD, MatchedRule.NUMERIC_CODE)


def test_otp_pattern_is_not_case_folded() -> None:
    config = dict(important_senders=set(), important_keywords=set(), spam_keywords=set(), otp_pattern=r"REF-[A-Z]+")
    assert classify("+1555", "Ticket REF-ABC ready", **config).matched_rule is MatchedRule.NUMERIC_CODE
    assert classify("+1555", "ticket ref-abc ready", **config).matched_rule is MatchedRule.DEFAULT


def test_numeric_code_beats_spam_keyword() -> None:
    result = classify("+1555", "Free entry code 123456", important_senders=set(), important_keywords=set())
    assert result.matched_rule is MatchedRule.NUMERIC_CODE


def test_unmatched_message_dropped_by_default() -> None:
    result = classify("+15550001111", "see you at dinner")
    assert result == Classification(Decision.DROP, MatchedRule.DEFAULT)


def test_comma_separated_terms_are_cleaned() -> None:
    config = FilterConfig(important_senders="bank, ,  swiggy ,")
    assert config.important_senders == frozenset({"bank", "swiggy"})


def test_invalid_otp_pattern_rejected_at_construction() -> None:
    with pytest.raises(ValidationError):
        FilterConfig(otp_pattern="(unclosed")


def test_unvalidated_bad_pattern_raises_during_classification() -> None:
    config = FilterConfig.model_construct(
        important_senders=frozenset(),
        important_keywords=frozenset(),
        spam_keywords=frozenset(),
        otp_pattern="(unclosed",
        forward_all=False,
    )
    with pytest.raises(FilterConfigError):
        ClassificationEngine().classify("+1555", "hello", config)


def test_classification_is_pure() -> None:
    engine = ClassificationEngine()
    config = FilterConfig()
    first = engine.classify("Amazon", "Your parcel is out", config)
    second = engine.classify("Amazon", "Your parcel is out", config)
    assert first == second
