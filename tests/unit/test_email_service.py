"""Unit tests for bonus pack email delivery."""

import pytest
from unittest.mock import Mock
from botocore.exceptions import ClientError
import sys
import os

# Add src directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..', 'src'))

from bonus.email_service import (
    BONUS_PACK_TEMPLATE,
    EmailService,
    StubNotifier,
    render_bonus_pack_email,
)


@pytest.fixture
def payload():
    return {
        'downloads': [
            {'display_name': 'Agent Charter Pack', 'url': 'https://example.com/a?sig=1&x=2'},
            {'display_name': 'Escalation & Override Protocols', 'url': 'https://example.com/b'},
        ],
        'expires_hours': 24,
        'app_base_url': 'https://ai-born.org',
    }


class TestRenderBonusPackEmail:
    """Test cases for the bonus pack template."""

    def test_render(self, payload):
        subject, html_content, text_content = render_bonus_pack_email(payload)

        assert subject == "Your AI-Born Pre-order Bonus Pack is Ready"
        assert 'https://example.com/a?sig=1&amp;x=2' in html_content
        assert 'Escalation &amp; Override Protocols' in html_content
        assert '- Agent Charter Pack: https://example.com/a?sig=1&x=2' in text_content
        assert '24 hours' in text_content


class TestEmailService:
    """Test cases for EmailService."""

    def test_send_success(self, ses, payload):
        service = EmailService('bonus@ai-born.org', client=ses)

        result = service.send('reader@example.com', BONUS_PACK_TEMPLATE, payload)

        assert result.success is True
        assert result.tracking_id

    def test_message_rejected(self, payload):
        client = Mock()
        client.send_email.side_effect = ClientError(
            {'Error': {'Code': 'MessageRejected', 'Message': 'Address blacklisted'}},
            'SendEmail'
        )
        service = EmailService('bonus@ai-born.org', client=client)

        result = service.send('reader@example.com', BONUS_PACK_TEMPLATE, payload)

        assert result.success is False
        assert result.error == 'Email rejected: Address blacklisted'
        assert client.send_email.call_count == 1

    def test_unverified_sender(self, payload):
        client = Mock()
        client.send_email.side_effect = ClientError(
            {'Error': {'Code': 'MailFromDomainNotVerifiedException', 'Message': 'not verified'}},
            'SendEmail'
        )
        service = EmailService('bonus@ai-born.org', client=client)

        result = service.send('reader@example.com', BONUS_PACK_TEMPLATE, payload)

        assert result.error == "Sender email not verified in SES"

    def test_throttling_exhausted(self, payload):
        client = Mock()
        client.send_email.side_effect = ClientError(
            {'Error': {'Code': 'Throttling', 'Message': 'Maximum sending rate exceeded'}},
            'SendEmail'
        )
        service = EmailService('bonus@ai-born.org', client=client, max_attempts=2, base_delay=0.0)

        result = service.send('reader@example.com', BONUS_PACK_TEMPLATE, payload)

        assert result.success is False
        assert result.error.startswith('Email service unavailable')
        assert client.send_email.call_count == 2

    def test_unknown_template(self):
        service = EmailService('bonus@ai-born.org', client=Mock())

        result = service.send('reader@example.com', 'welcome', {})

        assert result.success is False
        assert 'Unknown template' in result.error


class TestStubNotifier:
    def test_records_sends(self, payload):
        notifier = StubNotifier()

        result = notifier.send('reader@example.com', BONUS_PACK_TEMPLATE, payload)

        assert result.success is True
        assert result.tracking_id.startswith('stub-')
        assert notifier.sent[0]['recipient'] == 'reader@example.com'
