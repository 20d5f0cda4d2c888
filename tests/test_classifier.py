import asyncio
import json
from datetime import datetime
from types import SimpleNamespace

import pytest

from classifier import ReviewClassifier, policy_codes_of
from models import ReportReason

CALLBACK = "https://moderation.example.com/reports/report-1/review"
REPORTED_AT = datetime(2024, 5, 1, 12, 0, 0)


def review(classifier, *texts, **kwargs):
    padded = list(texts) + [None] * (3 - len(texts))
    return json.loads(asyncio.run(classifier.submit_review_request(
        ReportReason.OTHER, REPORTED_AT, CALLBACK, padded[0], padded[1], padded[2], **kwargs)))


@pytest.fixture
def classifier():
    return ReviewClassifier(llm_client=None)


def test_clean_content(classifier):
    result = review(classifier, "What a lovely day at the park with friends.")
    assert result["policyCodes"] == ["OK"]
    assert result["country"] == "USA"
    assert result["language"] == "eng"
    assert result["reportedAt"] == REPORTED_AT.isoformat()


def test_threat_is_banned(classifier):
    response = json.dumps(review(classifier, "I will find you and kill you"))
    assert "TH" in policy_codes_of(response)
    assert classifier.is_content_not_allowed(response)


def test_profanity_is_mature(classifier):
    response = json.dumps(review(classifier, "this is such shit"))
    assert classifier.is_content_mature(response)
    assert not classifier.is_content_not_allowed(response)


def test_spam_indicators(classifier):
    result = review(classifier, "Buy now! Click here for a discount")
    assert "SP" in result["policyCodes"]


def test_every_text_field_is_reviewed(classifier):
    result = review(classifier, "hello there", None, "please kill yourself")
    assert "TH" in result["policyCodes"]


@pytest.mark.parametrize("kwargs", [
    {"country": "US"},
    {"language": "en"},
    {"language": ""},
])
def test_locale_codes_must_have_three_letters(classifier, kwargs):
    with pytest.raises(ValueError):
        review(classifier, "hello", **kwargs)


def test_empty_request_rejected(classifier):
    with pytest.raises(ValueError):
        review(classifier, " ", None, "")


def test_image_only_request_accepted(classifier):
    result = review(classifier, image_url="https://cdn.example.com/images/img-1")
    assert result["policyCodes"] == ["OK"]


class FakeMessages:
    def __init__(self, text=None, error=None):
        self.text = text
        self.error = error
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        return SimpleNamespace(content=[SimpleNamespace(text=self.text)])


def test_llm_review_is_used_when_configured():
    messages = FakeMessages(text=json.dumps({"policyCodes": ["dr"], "analysis": "mentions drugs"}))
    classifier = ReviewClassifier(llm_client=SimpleNamespace(messages=messages), model="test-model")

    result = review(classifier, "nothing in the keyword list")

    assert result["policyCodes"] == ["DR"]
    assert result["analysis"] == "mentions drugs"
    assert messages.calls[0]["model"] == "test-model"


def test_llm_unknown_codes_fall_back_to_rules():
    messages = FakeMessages(text=json.dumps({"policyCodes": ["NOPE"]}))
    classifier = ReviewClassifier(llm_client=SimpleNamespace(messages=messages))

    assert "TH" in review(classifier, "kill yourself")["policyCodes"]


def test_llm_garbage_falls_back_to_rules():
    messages = FakeMessages(text="I cannot answer in JSON")
    classifier = ReviewClassifier(llm_client=SimpleNamespace(messages=messages))

    assert review(classifier, "a calm message")["policyCodes"] == ["OK"]
