"""Issuance and redemption of single-use access tokens for private forms.

Both workflows receive their collaborators explicitly: a TokenStore for
persistence and a Mailer for delivery. Nothing here opens a session or a
mail connection on its own.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional, Union

from encryption import EmailCipher, email_cipher
from errors import (
    AccessTokenError, DispatchFailure, InvalidToken, TokenAlreadyUsed, ValidationInputError,
)
from mailer import DispatchResult, Mailer, PUBLIC_BASE_URL, form_url, render_access_token_email
from models import AccessToken
from token_store import TokenStore
from tokens import MAX_TOKEN_ATTEMPTS, first_unique, generate_token

logger = logging.getLogger(__name__)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


# ------------------------
# Batch outcome
# ------------------------
@dataclass(frozen=True)
class Issued:
    """A token was persisted for ``email``; ``delivered`` says whether the email went out."""
    email: str
    token: str
    delivered: bool

@dataclass(frozen=True)
class Failed:
    """No token exists for ``email``."""
    email: str
    reason: str

Outcome = Union[Issued, Failed]


@dataclass
class IssuanceReport:
    outcomes: list[Outcome] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def results(self) -> list[dict]:
        return [
            {"email": o.email, "token": o.token, "sent": o.delivered}
            for o in self.outcomes if isinstance(o, Issued)
        ]

    @property
    def errors(self) -> list[dict]:
        out = []
        for o in self.outcomes:
            if isinstance(o, Failed):
                out.append({"email": o.email, "error": o.reason})
            elif not o.delivered:
                out.append({"email": o.email, "error": DispatchFailure.default_message})
        return out

    @property
    def successful(self) -> int:
        return len(self.results)

    @property
    def failed(self) -> int:
        return len(self.errors)

    def as_dict(self) -> dict:
        body = {
            "success": True,
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "results": self.results,
        }
        errors = self.errors
        if errors:
            body["errors"] = errors
        return body


# ------------------------
# Delivery
# ------------------------
def deliver_token(mailer: Mailer, email: str, form_id: int, form_title: str, token: str,
                  base_url: str = PUBLIC_BASE_URL) -> DispatchResult:
    """Email a token to its recipient. Never raises."""
    subject, text, html = render_access_token_email(form_title, token, form_url(form_id, base_url))
    try:
        return mailer.send(email, subject, text, html)
    except Exception as e:
        logger.exception("Mail transport raised while sending to form %s recipient", form_id)
        return DispatchResult(False, str(e))


# ------------------------
# Issuance
# ------------------------
def issue_tokens(
    store: TokenStore,
    mailer: Mailer,
    form_id: int,
    form_title: str,
    emails: list[str],
    *,
    cipher: EmailCipher = email_cipher,
    base_url: str = PUBLIC_BASE_URL,
    generate: Callable[[], str] = generate_token,
    max_attempts: int = MAX_TOKEN_ATTEMPTS,
) -> IssuanceReport:
    """Create, persist and email one access token per address.

    Every address is processed independently: a failure for one address is
    recorded in the report and processing moves on to the next. A token is
    persisted before its email is sent and is kept even if the send fails.

    Args:
        store: Token persistence.
        mailer: Mail transport.
        form_id: Form the tokens unlock.
        form_title: Title used in the email subject and body.
        emails: Recipient addresses, one token each.

    Returns:
        IssuanceReport: One outcome per address, in input order.

    Raises:
        ValidationInputError: If the form id or email list is missing.
    """
    if not form_id:
        raise ValidationInputError("form_id is required")
    if not emails:
        raise ValidationInputError("emails must be a non-empty list")
    addresses = [(e or "").strip() for e in emails]
    if any(not a for a in addresses):
        raise ValidationInputError("emails must not contain blank entries")

    report = IssuanceReport()
    for email in addresses:
        try:
            token = first_unique(generate, store.token_exists, max_attempts)
            store.insert(AccessToken(form_id=form_id, email=cipher.encrypt(email), token=token, used=False))
        except AccessTokenError as e:
            logger.warning("Token issuance failed for form %s: %s", form_id, e.message)
            report.outcomes.append(Failed(email, e.message))
            continue

        result = deliver_token(mailer, email, form_id, form_title, token, base_url)
        if not result.success:
            logger.warning("Token for form %s persisted but email failed: %s", form_id, result.error)
        report.outcomes.append(Issued(email, token, result.success))

    logger.info("Issued tokens for form %s: %d/%d, %d errors",
                form_id, report.successful, report.total, report.failed)
    return report


# ------------------------
# Validation
# ------------------------
def validate_token(store: TokenStore, form_id: int, token: str, now: Optional[datetime] = None) -> None:
    """Redeem ``token`` for ``form_id``, consuming it.

    The used-flag flip is a single conditional UPDATE keyed on ``used ==
    False``; only when it matches nothing is the row inspected to tell an
    unknown token from a spent one.

    Raises:
        ValidationInputError: If form id or token is missing.
        InvalidToken: If no token matches this form.
        TokenAlreadyUsed: If the token was already redeemed.
        StoreUnavailable: If the store cannot be reached.
    """
    if not form_id or not token:
        raise ValidationInputError("form_id and token are required")

    claimed = store.update_if(
        {"form_id": form_id, "token": token, "used": False},
        {"used": True, "used_at": now or _now_utc()},
    )
    if claimed:
        logger.info("Access granted for form %s", form_id)
        return

    if store.find_one(form_id=form_id, token=token) is None:
        logger.info("Rejected unknown token for form %s", form_id)
        raise InvalidToken()
    logger.info("Rejected spent token for form %s", form_id)
    raise TokenAlreadyUsed()


# ------------------------
# Operator recovery
# ------------------------
def resend_token(store: TokenStore, mailer: Mailer, token: str, *,
                 cipher: EmailCipher = email_cipher, base_url: str = PUBLIC_BASE_URL) -> AccessToken:
    """Send an existing, unused token to its recipient again.

    Raises:
        InvalidToken: If the token does not exist.
        TokenAlreadyUsed: If the token was already redeemed.
        DispatchFailure: If the email could not be sent.
    """
    record = store.find_one(token=token)
    if record is None:
        raise InvalidToken()
    if record.used:
        raise TokenAlreadyUsed()

    result = deliver_token(mailer, cipher.decrypt(record.email), record.form_id,
                           record.form.title, record.token, base_url)
    if not result.success:
        raise DispatchFailure()
    logger.info("Resent token for form %s", record.form_id)
    return record
