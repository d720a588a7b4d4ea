"""
Alert delivery — SMS (Twilio REST), webhook, and e-mail.

Every sender is blocking (called from the aggregator worker, never from a
sensor thread) and returns True on success. A sender is `enabled` only when
its config block is filled in; disabled senders are skipped.
"""

import smtplib
import time
from datetime import datetime
from email.message import EmailMessage

import requests

from .config import log
from .constants import API_TIMEOUT_ALERT, ALERT_ATTEMPTS, APP_NAME
from . import http_client

TWILIO_API = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"


def format_alert(record):
    when = datetime.fromtimestamp(record.timestamp).strftime("%Y-%m-%d %H:%M:%S")
    return (f"[{APP_NAME}] {record.severity.name} {record.category.value}: "
            f"{record.description} @ {when}")


class _Fatal(Exception):
    """Non-retryable delivery failure (bad credentials)."""


def _with_retries(label, send, attempts=ALERT_ATTEMPTS, sleep=time.sleep):
    """Call send() until it returns True; 2s→4s backoff between attempts."""
    for attempt in range(attempts):
        try:
            if send():
                return True
        except requests.RequestException as e:
            log.warning("%s network error (attempt %d): %s", label, attempt + 1, e)
        if attempt < attempts - 1:
            sleep(2 * (attempt + 1))
    log.error("%s FAILED after %d attempts", label, attempts)
    return False


# ─── SMS (Twilio) ────────────────────────────────────────────────

class SmsAlertSender:
    name = "sms"

    def __init__(self, account_sid, auth_token, from_number, to_number, sleep=time.sleep):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.to_number = to_number
        self._sleep = sleep

    @property
    def enabled(self):
        return all((self.account_sid, self.auth_token, self.from_number, self.to_number))

    def send(self, message, record=None):
        url = TWILIO_API.format(sid=self.account_sid)
        data = {"To": self.to_number, "From": self.from_number, "Body": message}

        def post():
            resp = http_client.http.post(url, data=data, auth=(self.account_sid, self.auth_token),
                                         timeout=API_TIMEOUT_ALERT)
            if resp.status_code in (200, 201):
                log.info("SMS alert sent: %s", resp.json().get("sid", "?"))
                return True
            if resp.status_code in (401, 403):
                log.error("SMS alert REJECTED (%d) — check Twilio credentials", resp.status_code)
                raise _Fatal()
            log.warning("SMS alert failed: HTTP %d — %s", resp.status_code, resp.text[:200])
            return False

        try:
            return _with_retries("SMS alert", post, sleep=self._sleep)
        except _Fatal:
            return False


# ─── Webhook ─────────────────────────────────────────────────────

class WebhookAlertSender:
    name = "webhook"

    def __init__(self, url, sleep=time.sleep):
        self.url = url
        self._sleep = sleep

    @property
    def enabled(self):
        return bool(self.url)

    def send(self, message, record=None):
        payload = {"message": message}
        if record is not None:
            payload["event"] = record.to_dict()

        def post():
            resp = http_client.http.post(self.url, json=payload, timeout=API_TIMEOUT_ALERT)
            if 200 <= resp.status_code < 300:
                log.info("Webhook alert delivered (HTTP %d)", resp.status_code)
                return True
            log.warning("Webhook alert failed: HTTP %d", resp.status_code)
            return False

        return _with_retries("Webhook alert", post, sleep=self._sleep)


# ─── E-mail ──────────────────────────────────────────────────────

class EmailAlertSender:
    name = "email"

    def __init__(self, host, port, user, password, sender, recipient):
        self.host = host
        self.port = int(port or 587)
        self.user = user
        self.password = password
        self.sender = sender or user
        self.recipient = recipient

    @property
    def enabled(self):
        return bool(self.host and self.sender and self.recipient)

    def send(self, message, record=None):
        msg = EmailMessage()
        subject = f"{APP_NAME} security alert"
        if record is not None:
            subject += f" ({record.severity.name} {record.category.value})"
        msg["Subject"] = subject
        msg["From"] = self.sender
        msg["To"] = self.recipient
        msg.set_content(message)
        try:
            with smtplib.SMTP(self.host, self.port, timeout=API_TIMEOUT_ALERT) as smtp:
                smtp.starttls()
                if self.user:
                    smtp.login(self.user, self.password)
                smtp.send_message(msg)
            log.info("E-mail alert sent to %s", self.recipient)
            return True
        except (smtplib.SMTPException, OSError) as e:
            log.warning("E-mail alert failed: %s", e)
            return False


# ─── Dispatcher ──────────────────────────────────────────────────

class AlertDispatcher:
    """
    The aggregator's "send alert" collaborator. Fans a record out to every
    enabled sender; True when at least one of them delivered it.
    """

    def __init__(self, senders=()):
        self.senders = [s for s in senders if s.enabled]

    @classmethod
    def from_config(cls, config):
        a = config.get("alerts", {})
        senders = [
            SmsAlertSender(a.get("twilioAccountSid"), a.get("twilioAuthToken"),
                           a.get("twilioFromNumber"), a.get("phoneNumber")),
            WebhookAlertSender(a.get("webhookUrl")),
            EmailAlertSender(a.get("smtpHost"), a.get("smtpPort"), a.get("smtpUser"),
                             a.get("smtpPassword"), a.get("emailFrom"), a.get("emailTo")),
        ]
        dispatcher = cls(senders)
        if dispatcher.senders:
            log.info("Alert channels: %s", ", ".join(s.name for s in dispatcher.senders))
        else:
            log.warning("No alert channels configured — alerts will only be logged")
        return dispatcher

    @property
    def enabled(self):
        return bool(self.senders)

    def __call__(self, record):
        return self.dispatch(record)

    def dispatch(self, record):
        if not self.senders:
            return False
        message = format_alert(record)
        delivered = False
        for sender in self.senders:
            try:
                ok = sender.send(message, record)
            except Exception as e:
                log.error("Alert sender %s crashed: %s", sender.name, e)
                ok = False
            delivered = delivered or ok
        return delivered
