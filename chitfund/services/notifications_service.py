# chitfund/services/notifications_service.py
"""
Fire-and-forget email / SMS for payment events.

Nothing here raises: a failed send is logged and the financial operation
that triggered it stands.
"""
import logging
import smtplib
import ssl
from email.message import EmailMessage
from typing import Optional

import requests

from chitfund import config

log = logging.getLogger("chitfund.notifications")


# -------------------------------------------------------------------
# Templates (subject, body)
# -------------------------------------------------------------------
def payment_request_template(user_name, amount, plan_name, date):
    subject = "Payment Request Received"
    body = (
        f"Hello {user_name},\n\n"
        f"Your offline payment request of Rs.{amount} for {plan_name} "
        f"dated {date:%d %b %Y} has been received and is pending merchant approval.\n"
    )
    return subject, body


def payment_request_merchant_template(merchant_name, user_name, amount, plan_name):
    subject = "New Payment Request"
    body = (
        f"Hello {merchant_name},\n\n"
        f"{user_name} has submitted an offline payment of Rs.{amount} for {plan_name}. "
        f"Please review it in your dashboard.\n"
    )
    return subject, body


def payment_approved_template(user_name, amount, plan_name):
    subject = "Payment Successful"
    body = f"Hello {user_name},\n\nYour payment of Rs.{amount} for {plan_name} has been recorded.\n"
    return subject, body


def payment_approved_merchant_template(merchant_name, user_name, amount, plan_name):
    subject = "Payment Received"
    body = f"Hello {merchant_name},\n\nA payment of Rs.{amount} from {user_name} for {plan_name} has been recorded.\n"
    return subject, body


def payment_rejected_template(user_name, amount, plan_name):
    subject = "Payment Request Rejected"
    body = (
        f"Hello {user_name},\n\n"
        f"Your offline payment request of Rs.{amount} for {plan_name} was rejected by the merchant. "
        f"Please contact them for details.\n"
    )
    return subject, body


def withdrawal_requested_template(merchant_name, user_name, plan_name):
    subject = "Withdrawal Requested"
    body = f"Hello {merchant_name},\n\n{user_name} has requested withdrawal of their savings in {plan_name}.\n"
    return subject, body


def settlement_template(user_name, amount, plan_name, transaction_id):
    subject = "Withdrawal Settled"
    body = (
        f"Hello {user_name},\n\n"
        f"Your savings of Rs.{amount} in {plan_name} have been settled. "
        f"Reference: {transaction_id}\n"
    )
    return subject, body


# -------------------------------------------------------------------
# Transports
# -------------------------------------------------------------------
def send_email(to: Optional[str], subject: str, body: str) -> bool:
    if not to:
        return False
    if not config.SMTP_HOST:
        log.info("[Simulation] Email to %s: %s", to, subject)
        return True

    msg = EmailMessage()
    msg["From"] = config.MAIL_FROM or config.SMTP_USER
    msg["To"] = to
    msg["Subject"] = subject
    msg.set_content(body)

    try:
        if config.SMTP_PORT == 465:
            context = ssl.create_default_context()
            with smtplib.SMTP_SSL(config.SMTP_HOST, config.SMTP_PORT, context=context,
                                  timeout=config.NOTIFY_TIMEOUT_SECONDS) as server:
                if config.SMTP_USER:
                    server.login(config.SMTP_USER, config.SMTP_PASS)
                server.send_message(msg)
        else:
            with smtplib.SMTP(config.SMTP_HOST, config.SMTP_PORT, timeout=config.NOTIFY_TIMEOUT_SECONDS) as server:
                server.ehlo()
                if config.SMTP_USE_TLS:
                    server.starttls()
                    server.ehlo()
                if config.SMTP_USER:
                    server.login(config.SMTP_USER, config.SMTP_PASS)
                server.send_message(msg)
        return True
    except Exception as e:
        log.warning("Email send failed to=%s subject=%r: %s", to, subject, e)
        return False


def send_sms(phone: Optional[str], message: str) -> bool:
    if not phone:
        return False
    if not config.SMS_GATEWAY_URL:
        log.info("[Simulation] SMS to %s: %s", phone, message)
        return True

    to = phone if phone.startswith("+") else f"+91{phone}"
    try:
        resp = requests.post(
            config.SMS_GATEWAY_URL,
            json={"to": to, "message": message},
            headers={"Authorization": f"Bearer {config.SMS_GATEWAY_API_KEY}"},
            timeout=config.NOTIFY_TIMEOUT_SECONDS,
        )
        resp.raise_for_status()
        return True
    except requests.RequestException as e:
        log.warning("SMS send failed to=%s: %s", to, e)
        return False


def notify(account, template) -> None:
    """Email (and SMS the subject line) to a User or Merchant row."""
    if account is None:
        return
    subject, body = template
    try:
        send_email(getattr(account, "email", None), subject, body)
        send_sms(getattr(account, "phone", None), f"{subject}: {body.splitlines()[-1]}")
    except Exception:
        log.exception("Notification failed for %s", getattr(account, "email", account))
