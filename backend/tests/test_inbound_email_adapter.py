"""
Inbound email adapter tests.

Coverage:
  - normalize_worker / normalize_postmark / normalize_resend
  - timestamp parsing (epoch ms, ISO-8601, junk)
  - normalize_webhook dispatcher (argument, EMAIL_PROVIDER env var, unknown)
"""

import os
import pytest
from datetime import datetime, timezone
from unittest.mock import patch

from app.services.inbound_email_adapter import (
    normalize_postmark,
    normalize_resend,
    normalize_webhook,
    normalize_worker,
)


def _make_worker_payload(**overrides) -> dict:
    payload = {
        "from": "someone@example.com",
        "to": "alpha_@nftmail.box",
        "subject": "hello",
        "content": "plain body",
        "timestamp": 1772366400000,
    }
    payload.update(overrides)
    return payload


class TestNormalizeWorker:
    def test_fields_mapped(self):
        message = normalize_worker(_make_worker_payload())
        assert message.sender == "someone@example.com"
        assert message.recipient == "alpha_@nftmail.box"
        assert message.subject == "hello"
        assert message.content == "plain body"
        assert message.timestamp == datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def test_iso_timestamp(self):
        message = normalize_worker(_make_worker_payload(timestamp="2026-03-01T12:00:00Z"))
        assert message.timestamp == datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def test_junk_timestamp_dropped(self):
        assert normalize_worker(_make_worker_payload(timestamp="yesterday")).timestamp is None

    def test_missing_optional_fields(self):
        message = normalize_worker({"from": "a@example.com", "to": "b_@nftmail.box"})
        assert message.subject == ""
        assert message.content == ""
        assert message.timestamp is None

    def test_first_of_multiple_recipients(self):
        message = normalize_worker(_make_worker_payload(to="alpha_@nftmail.box, beta_@nftmail.box"))
        assert message.recipient == "alpha_@nftmail.box"


class TestNormalizePostmark:
    def test_text_body_preferred(self):
        message = normalize_postmark({
            "From": "someone@example.com",
            "To": "carol@nftmail.box",
            "Subject": "Hi",
            "TextBody": "text",
            "HtmlBody": "<p>html</p>",
            "Date": "2026-03-01T12:00:00+00:00",
        })
        assert message.recipient == "carol@nftmail.box"
        assert message.content == "text"
        assert message.timestamp.year == 2026

    def test_html_fallback(self):
        message = normalize_postmark({"From": "a@x.com", "To": "b@nftmail.box", "HtmlBody": "<p>x</p>"})
        assert message.content == "<p>x</p>"


class TestNormalizeResend:
    def test_list_recipient(self):
        message = normalize_resend({
            "from": "someone@example.com",
            "to": ["beta_@nftmail.box", "other@nftmail.box"],
            "subject": "Hi",
            "text": "text",
            "created_at": "2026-03-01T12:00:00.000Z",
        })
        assert message.recipient == "beta_@nftmail.box"
        assert message.content == "text"
        assert message.timestamp.tzinfo is not None


class TestNormalizeWebhook:
    def test_defaults_to_worker(self):
        with patch.dict(os.environ, {}, clear=False):
            os.environ.pop("EMAIL_PROVIDER", None)
            message = normalize_webhook(_make_worker_payload())
        assert message.content == "plain body"

    def test_env_var_selects_provider(self):
        with patch.dict(os.environ, {"EMAIL_PROVIDER": "postmark"}):
            message = normalize_webhook({"From": "a@x.com", "To": "b@nftmail.box", "TextBody": "pm"})
        assert message.content == "pm"

    def test_explicit_provider_wins(self):
        with patch.dict(os.environ, {"EMAIL_PROVIDER": "postmark"}):
            message = normalize_webhook(_make_worker_payload(), provider=" Worker ")
        assert message.content == "plain body"

    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unknown email provider"):
            normalize_webhook({}, provider="sendgrid")
