"""
Mail Submission
===============

Builds a MIME message and submits it over SMTP. Independent of the IMAP
session layer.

POST-SEND-02: Envelope recipients are to + cc + bcc; Bcc is never a header.
"""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from email.utils import formataddr, formatdate, getaddresses, make_msgid
from typing import TYPE_CHECKING

from contracts import DeliveryReceipt, InvalidArgumentError, NotConfiguredError, SubmissionError

if TYPE_CHECKING:
    from src.imap_mcp.accounts import Account

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


def _addresses(*fields: str | None) -> list[str]:
    return [addr for _name, addr in getaddresses([f for f in fields if f]) if addr]


def build_message(
    account: Account,
    to: str,
    subject: str,
    text: str = "",
    html: str | None = None,
    cc: str | None = None,
    reply_to: str | None = None,
) -> EmailMessage:
    """Compose the outgoing message. Bcc is handled by the envelope only."""
    msg = EmailMessage()
    sender = account.username or ""
    msg["From"] = formataddr((account.from_name, sender)) if account.from_name else sender
    msg["To"] = to
    if cc:
        msg["Cc"] = cc
    if reply_to:
        msg["Reply-To"] = reply_to
    msg["Subject"] = subject
    msg["Date"] = formatdate(localtime=True)
    domain = sender.rpartition("@")[2] or None
    msg["Message-ID"] = make_msgid(domain=domain)

    msg.set_content(text or "")
    if html:
        msg.add_alternative(html, subtype="html")
    return msg


def _connect(account: Account, timeout: float) -> smtplib.SMTP:
    settings = account.smtp
    if settings.security == "ssl":
        return smtplib.SMTP_SSL(settings.host, settings.port, timeout=timeout)
    smtp = smtplib.SMTP(settings.host, settings.port, timeout=timeout)
    if settings.security == "starttls":
        smtp.starttls()
    return smtp


def send_message(
    account: Account,
    to: str,
    subject: str,
    text: str = "",
    html: str | None = None,
    cc: str | None = None,
    bcc: str | None = None,
    reply_to: str | None = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> DeliveryReceipt:
    """
    Submit one message through the account's SMTP server.

    ERRORS:
    - NotConfiguredError: account has no SMTP settings
    - InvalidArgumentError: no recipient address
    - SubmissionError: connect, login or submission failed
    """
    if account.smtp is None:
        raise NotConfiguredError(f"SMTP not configured for account '{account.key}'")

    recipients = _addresses(to, cc, bcc)
    if not recipients:
        raise InvalidArgumentError("No recipients specified")

    msg = build_message(account, to, subject, text=text, html=html, cc=cc, reply_to=reply_to)
    logger.info(
        "Sending via %s (%s:%d) to %d recipient(s)",
        account.key,
        account.smtp.host,
        account.smtp.port,
        len(recipients),
    )

    smtp = None
    try:
        smtp = _connect(account, timeout)
        smtp.login(account.username, account.password)
        refused = smtp.send_message(msg, from_addr=account.username, to_addrs=recipients)
    except smtplib.SMTPRecipientsRefused as e:
        raise SubmissionError(f"All recipients refused: {', '.join(e.recipients)}") from e
    except (smtplib.SMTPException, OSError) as e:
        raise SubmissionError(f"SMTP submission failed: {e}") from e
    finally:
        if smtp is not None:
            try:
                smtp.quit()
            except (smtplib.SMTPException, OSError) as e:
                logger.debug("SMTP quit failed: %s", e)

    refused = refused or {}
    return DeliveryReceipt(
        message_id=msg["Message-ID"],
        accepted=[r for r in recipients if r not in refused],
        rejected=list(refused),
    )
