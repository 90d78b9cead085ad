import logging
from typing import Optional

import resend

from .config import settings
from .email_templates import TEMPLATES
from .exceptions import NotificationError

logger = logging.getLogger("party_rentals")


class EmailNotifier:
    """Sends templated emails through Resend."""

    def __init__(self, api_key: Optional[str] = None, from_address: Optional[str] = None):
        self.api_key = api_key if api_key is not None else settings.RESEND_API_KEY
        self.from_address = from_address or settings.EMAIL_FROM_ADDRESS

    def send_email(self, template: str, recipient: str, data: dict) -> None:
        render = TEMPLATES.get(template)
        if render is None:
            raise NotificationError(f"Unknown email template: {template}")
        if not self.api_key:
            raise NotificationError("Email service not configured - RESEND_API_KEY missing")

        try:
            subject, html = render(data)
        except KeyError as e:
            raise NotificationError(f"Missing template data for '{template}': {e}") from e

        resend.api_key = self.api_key
        try:
            response = resend.Emails.send({
                "from": self.from_address,
                "to": [recipient],
                "subject": subject,
                "html": html,
            })
        except Exception as e:
            raise NotificationError(f"Failed to send '{template}' email to {recipient}: {e}") from e

        logger.info(f"Sent '{template}' email to {recipient}: {response}")


def notify_safely(notifier, template: str, recipient: Optional[str], data: dict) -> bool:
    """
    Best-effort send. Failures are logged and reported as False, never raised,
    so a state change that already happened is not undone by an email problem.
    """
    if not recipient:
        return False
    try:
        notifier.send_email(template, recipient, data)
        return True
    except NotificationError as e:
        logger.warning(f"Notification '{template}' to {recipient} failed: {e}")
    except Exception as e:
        logger.error(f"Unexpected error sending '{template}' to {recipient}: {e}")
    return False
