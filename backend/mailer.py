import os
import logging
from dataclasses import dataclass
from html import escape
from typing import Optional, Protocol

import httpx
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

MAILJET_API_KEY = os.getenv("MAILJET_API_KEY", "")
MAILJET_SECRET_KEY = os.getenv("MAILJET_SECRET_KEY", "")
MAIL_SENDER_EMAIL = os.getenv("MAIL_SENDER_EMAIL", "no-reply@example.com")
MAIL_SENDER_NAME = os.getenv("MAIL_SENDER_NAME", "Course Feedback")
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:3000")

MAILJET_SEND_URL = "https://api.mailjet.com/v3.1/send"


@dataclass(frozen=True)
class DispatchResult:
    success: bool
    error: Optional[str] = None


class Mailer(Protocol):
    def send(self, to_address: str, subject: str, body: str, html: Optional[str] = None) -> DispatchResult: ...


# --- Email content ---

def form_url(form_id: int, base_url: str = PUBLIC_BASE_URL) -> str:
    """Return the respondent-facing link for a form."""
    return f"{base_url.rstrip('/')}/feedback/{form_id}"

def render_access_token_email(form_title: str, token: str, link: str) -> tuple[str, str, str]:
    """Build (subject, text body, html body) for an access token email."""
    subject = f"Access Token for {form_title}"
    text = (
        "Private Feedback Form Access\n\n"
        f"You have been granted access to provide feedback for: {form_title}\n\n"
        f"Your Access Token: {token}\n\n"
        "To access the form:\n"
        f"1. Visit: {link}\n"
        "2. Enter your access token when prompted\n"
        "3. Complete the feedback form\n\n"
        "Important: This token can only be used once. Keep it secure and do not share it with others.\n\n"
        "If you did not expect this email, please ignore it.\n"
    )
    safe_title, safe_link = escape(form_title), escape(link, quote=True)
    html = f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
        <h2 style="color: #333;">Private Feedback Form Access</h2>
        <p>You have been granted access to provide feedback for: <strong>{safe_title}</strong></p>
        <div style="background-color: #f5f5f5; padding: 20px; border-radius: 5px; margin: 20px 0;">
            <p style="margin: 0; font-size: 18px; font-weight: bold; color: #2563eb;">
                Your Access Token: <code>{token}</code>
            </p>
        </div>
        <p>To access the form:</p>
        <ol>
            <li>Open the form: <a href="{safe_link}">{safe_title}</a></li>
            <li>Enter your access token when prompted</li>
            <li>Complete the feedback form</li>
        </ol>
        <p style="color: #666; font-size: 14px;">
            <strong>Important:</strong> This token can only be used once. Keep it secure and do not share it with others.
        </p>
    </div>
    """
    return subject, text, html


# --- Transports ---

class MailjetMailer:
    """Sends mail through the Mailjet Send API v3.1.

    ``send`` never raises; every problem is reported as an unsuccessful
    DispatchResult.
    """

    def __init__(self, api_key: str, secret_key: str, sender_email: str, sender_name: str,
                 timeout: float = 10.0, client: Optional[httpx.Client] = None):
        self.api_key = api_key
        self.secret_key = secret_key
        self.sender_email = sender_email
        self.sender_name = sender_name
        self.timeout = timeout
        self._client = client

    def send(self, to_address: str, subject: str, body: str, html: Optional[str] = None) -> DispatchResult:
        if not self.api_key or not self.secret_key:
            logger.warning("Mailjet credentials not found. Skipping email send.")
            return DispatchResult(False, "mail transport not configured")

        message = {
            "From": {"Email": self.sender_email, "Name": self.sender_name},
            "To": [{"Email": to_address}],
            "Subject": subject,
            "TextPart": body,
        }
        if html:
            message["HTMLPart"] = html

        try:
            client = self._client or httpx.Client(timeout=self.timeout)
            try:
                response = client.post(
                    MAILJET_SEND_URL,
                    json={"Messages": [message]},
                    auth=(self.api_key, self.secret_key),
                )
            finally:
                if self._client is None:
                    client.close()
        except httpx.HTTPError as e:
            logger.warning("Error sending email: %s", e)
            return DispatchResult(False, str(e))

        if response.status_code == 200:
            logger.info("Email sent successfully")
            return DispatchResult(True)
        logger.warning("Failed to send email: %s %s", response.status_code, response.text)
        return DispatchResult(False, f"mail transport returned {response.status_code}")


_default_mailer = MailjetMailer(MAILJET_API_KEY, MAILJET_SECRET_KEY, MAIL_SENDER_EMAIL, MAIL_SENDER_NAME)

def get_mailer() -> Mailer:
    """FastAPI dependency returning the configured mail transport."""
    return _default_mailer
