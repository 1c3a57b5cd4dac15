"""Notification delivery for bonus entitlements using AWS SES."""

import os
import uuid
import html
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

import boto3
from botocore.exceptions import ClientError

from shared.retry import RetryExhaustedError, retry_call
from .models import NotificationResult

logger = logging.getLogger(__name__)

BONUS_PACK_TEMPLATE = 'bonus-pack-delivery'


class Notifier(ABC):
    """Sends templated notifications to a single recipient."""

    @abstractmethod
    def send(self, recipient: str, template_id: str, payload: Dict[str, Any]) -> NotificationResult:
        """Send a notification. Failures are returned, never raised."""


def render_bonus_pack_email(payload: Dict[str, Any]) -> Tuple[str, str, str]:
    """
    Render the bonus pack delivery email.

    Args:
        payload: ``downloads`` (list of ``{display_name, url}``),
            ``expires_hours`` and ``app_base_url``

    Returns:
        Tuple of (subject, html_content, text_content)
    """
    downloads: List[Dict[str, str]] = payload.get('downloads', [])
    expires_hours = payload.get('expires_hours', 24)
    app_base_url = payload.get('app_base_url', '')

    subject = "Your AI-Born Pre-order Bonus Pack is Ready"

    links_html = "\n".join(
        f'<li style="margin: 8px 0;"><a href="{html.escape(item["url"], quote=True)}">'
        f'{html.escape(item["display_name"])}</a></li>'
        for item in downloads
    )
    links_text = "\n".join(f"- {item['display_name']}: {item['url']}" for item in downloads)

    html_content = f"""
    <!DOCTYPE html>
    <html>
    <head>
        <meta charset="UTF-8">
    </head>
    <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
        <div style="background-color: #0a0a0f; color: #00d9ff; padding: 20px; text-align: center; border-radius: 8px 8px 0 0;">
            <h1 style="margin: 0;">Your Pre-order Bonus Pack is Ready</h1>
        </div>

        <div style="background-color: white; padding: 20px; border: 1px solid #e0e0e0;">
            <p>Thank you for pre-ordering AI-Born. Your receipt has been verified.</p>

            <ul style="padding-left: 20px;">
            {links_html}
            </ul>

            <p>These links expire in {expires_hours} hours. If they expire, you can request new ones from your account.</p>
        </div>

        <div style="background-color: #f9f9f9; padding: 15px; border: 1px solid #e0e0e0; border-top: none; border-radius: 0 0 8px 8px; text-align: center; color: #666; font-size: 12px;">
            <p>{html.escape(app_base_url)}</p>
        </div>
    </body>
    </html>
    """

    text_content = f"""
    Your Pre-order Bonus Pack is Ready

    Thank you for pre-ordering AI-Born. Your receipt has been verified.

{links_text}

    These links expire in {expires_hours} hours. If they expire, you can request new ones from your account.
    """

    return subject, html_content, text_content


TEMPLATES = {
    BONUS_PACK_TEMPLATE: render_bonus_pack_email,
}


class EmailService(Notifier):
    """AWS SES email service."""

    def __init__(
        self,
        sender_email: str,
        client: Optional[Any] = None,
        max_attempts: int = 3,
        base_delay: float = 0.5,
        max_delay: float = 8.0
    ):
        """
        Initialize SES client.

        Args:
            sender_email: Verified SES sender address
            client: Optional pre-built boto3 SES client
            max_attempts: Attempts for transient SES errors
            base_delay: Initial backoff in seconds
            max_delay: Backoff ceiling in seconds
        """
        if client is not None:
            self.client = client
        else:
            # Support for LocalStack
            endpoint_url = os.environ.get('LOCALSTACK_ENDPOINT')
            if endpoint_url and os.environ.get('USE_LOCALSTACK', 'false').lower() == 'true':
                self.client = boto3.client('ses', endpoint_url=endpoint_url)
            else:
                self.client = boto3.client('ses')

        self.sender_email = sender_email
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay

    def send(self, recipient: str, template_id: str, payload: Dict[str, Any]) -> NotificationResult:
        """
        Render a template and send it.

        Args:
            recipient: Recipient email address
            template_id: Template identifier
            payload: Template variables

        Returns:
            NotificationResult with the SES message id as tracking id
        """
        renderer = TEMPLATES.get(template_id)
        if renderer is None:
            return NotificationResult(success=False, error=f"Unknown template: {template_id}")

        subject, html_content, text_content = renderer(payload)

        try:
            response = retry_call(
                self.client.send_email,
                Source=self.sender_email,
                Destination={
                    'ToAddresses': [recipient]
                },
                Message={
                    'Subject': {
                        'Data': subject,
                        'Charset': 'UTF-8'
                    },
                    'Body': {
                        'Text': {
                            'Data': text_content,
                            'Charset': 'UTF-8'
                        },
                        'Html': {
                            'Data': html_content,
                            'Charset': 'UTF-8'
                        }
                    }
                },
                max_attempts=self.max_attempts,
                base_delay=self.base_delay,
                max_delay=self.max_delay
            )
        except RetryExhaustedError as e:
            logger.error(f"SES unavailable for {template_id} after {e.attempts} attempts")
            return NotificationResult(success=False, error=f"Email service unavailable: {e.last_error}")
        except ClientError as e:
            error_code = e.response['Error']['Code']
            error_message = e.response['Error']['Message']

            logger.error(f"Failed to send email: {error_code} - {error_message}")

            if error_code == 'MessageRejected':
                return NotificationResult(success=False, error=f"Email rejected: {error_message}")
            elif error_code == 'MailFromDomainNotVerifiedException':
                return NotificationResult(success=False, error="Sender email not verified in SES")
            return NotificationResult(success=False, error=f"Failed to send email: {error_message}")

        logger.info(f"Email sent successfully. Message ID: {response['MessageId']}")
        return NotificationResult(success=True, tracking_id=response['MessageId'])


class StubNotifier(Notifier):
    """Notifier for development mode; records sends instead of delivering."""

    def __init__(self):
        self.sent: List[Dict[str, Any]] = []

    def send(self, recipient: str, template_id: str, payload: Dict[str, Any]) -> NotificationResult:
        tracking_id = f"stub-{uuid.uuid4()}"
        self.sent.append({'recipient': recipient, 'template_id': template_id, 'payload': payload})
        logger.info(f"Stub notifier accepted {template_id} ({tracking_id})")
        return NotificationResult(success=True, tracking_id=tracking_id)
