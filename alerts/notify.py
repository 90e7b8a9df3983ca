"""
alerts/notify.py -- Alert creation with email notification and observer push.

AlertNotifier is what posture/ mutation services call after a severe entity
is created. It writes (or refreshes) the Alert row for the entity, then:

  1. severity critical/high and email enabled -> NotificationSender.send(),
     and email_sent is recorded on the row.
  2. AlertObserver.alert_created(alert), when an observer is configured.

Delivery failures in either step are logged and swallowed. Creating the
alert must succeed even when SMTP or the webhook is down. Storage failures
writing the Alert row itself are NOT swallowed (RepositoryError propagates).

Collaborators:
  NotificationSender   -- send(destination, subject, body). SmtpNotificationSender
                          is the production implementation.
  AlertObserver        -- alert_created(alert). WebhookAlertObserver POSTs the
                          alert as JSON; real-time fan-out is the receiver's job.
"""

import html
import logging
import smtplib
from dataclasses import asdict
from datetime import datetime, timezone
from email.message import EmailMessage
from typing import Optional, Protocol

import requests

from core.config import Settings
from core.models import Alert, Risk, Threat, Vulnerability
from core.scoring import ALERTING_LEVELS
from posture.store import PostureStore

logger = logging.getLogger("threatmap.alerts.notify")

# CVSS floor for a vulnerability alert, and the floor for calling it critical.
VULN_ALERT_CVSS = 7.0
VULN_CRITICAL_CVSS = 9.0


class NotificationSender(Protocol):
    def send(self, destination: str, subject: str, body: str) -> None: ...


class AlertObserver(Protocol):
    def alert_created(self, alert: Alert) -> None: ...


# ---------------------------------------------------------------------------
# SMTP
# ---------------------------------------------------------------------------


class SmtpNotificationSender:
    """Deliver HTML mail through an SMTP relay (STARTTLS by default)."""

    def __init__(
        self,
        host: str,
        port: int = 587,
        username: str = "",
        password: str = "",
        use_tls: bool = True,
        sender: str = "",
        timeout: float = 10.0,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.sender = sender or username
        self.timeout = timeout

    def send(self, destination: str, subject: str, body: str) -> None:
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = destination
        msg["Subject"] = subject
        msg.set_content("This alert requires an HTML-capable mail client.")
        msg.add_alternative(body, subtype="html")
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            if self.use_tls:
                smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password)
            smtp.send_message(msg)


def render_alert_email(alert: Alert) -> tuple[str, str]:
    """Return (subject, html_body) for an alert email. Title and message are escaped."""
    severity = alert.severity.upper()
    subject = f"[ThreatMap] {severity} Alert: {alert.title}"
    generated = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
    body = (
        "<!DOCTYPE html><html><body style=\"font-family: Arial, sans-serif;\">"
        f"<div class=\"alert-box {html.escape(alert.severity)}\">"
        f"<div class=\"title\">ThreatMap Alert - {html.escape(severity)}</div>"
        f"<h2>{html.escape(alert.title)}</h2>"
        f"<div class=\"message\">{html.escape(alert.message)}</div>"
        "<div class=\"footer\">"
        f"<p>Alert Type: {html.escape(alert.type)}</p>"
        f"<p>Generated at: {generated}</p>"
        "<p>This is an automated alert from ThreatMap</p>"
        "</div></div></body></html>"
    )
    return subject, body


# ---------------------------------------------------------------------------
# Webhook
# ---------------------------------------------------------------------------


class WebhookAlertObserver:
    """POST each new alert as JSON to a fixed URL."""

    def __init__(self, url: str, timeout: float = 5.0, session: Optional[requests.Session] = None) -> None:
        self.url = url
        self.timeout = timeout
        self._session = session or requests.Session()
        # Receivers are configured endpoints; long redirect chains are not expected.
        self._session.max_redirects = 3

    def alert_created(self, alert: Alert) -> None:
        resp = self._session.post(self.url, json={"event": "new_alert", "alert": asdict(alert)}, timeout=self.timeout)
        resp.raise_for_status()


# ---------------------------------------------------------------------------
# Notifier
# ---------------------------------------------------------------------------


class AlertNotifier:
    def __init__(
        self,
        store: PostureStore,
        sender: Optional[NotificationSender] = None,
        observer: Optional[AlertObserver] = None,
        email_enabled: bool = False,
        destination: str = "",
    ) -> None:
        self.store = store
        self.sender = sender
        self.observer = observer
        self.email_enabled = email_enabled
        self.destination = destination

    @classmethod
    def from_settings(cls, store: PostureStore, settings: Settings) -> "AlertNotifier":
        sender = None
        if settings.alert_critical_email and settings.smtp_host:
            sender = SmtpNotificationSender(
                host=settings.smtp_host,
                port=settings.smtp_port,
                username=settings.smtp_user,
                password=settings.smtp_password,
                use_tls=settings.smtp_use_tls,
                sender=settings.email_from,
            )
        observer = WebhookAlertObserver(settings.alert_webhook_url) if settings.alert_webhook_url else None
        return cls(
            store,
            sender=sender,
            observer=observer,
            email_enabled=settings.alert_critical_email,
            destination=settings.alert_email_to or settings.smtp_user,
        )

    def create_alert(
        self,
        user_id: int,
        entity_type: str,
        entity_id: str,
        title: str,
        message: str,
        alert_type: str,
        severity: str,
    ) -> Alert:
        """Write a fresh `new` Alert row for the entity, then notify.

        An existing row for the same (user, type, id) key is reset to new and
        unread rather than duplicated.
        """
        values = {
            "title": title,
            "message": message,
            "type": alert_type,
            "severity": severity,
            "status": "new",
            "is_read": False,
            "email_sent": False,
            "acknowledged_by": None,
            "acknowledged_at": None,
            "resolved_at": None,
        }
        existing = self.store.find_alert(user_id, entity_type, entity_id)
        if existing is not None:
            alert = self.store.update("alert", existing.id, values) or existing
        else:
            alert = self.store.create(
                "alert",
                {"user_id": user_id, "related_entity_type": entity_type, "related_entity_id": entity_id, **values},
            )
        logger.info("Alert created: %s - %s", alert.id, alert.title)

        if alert.severity in ALERTING_LEVELS and self.email_enabled:
            if self._send_email(alert):
                alert = self.store.update("alert", alert.id, {"email_sent": True}) or alert

        if self.observer is not None:
            try:
                self.observer.alert_created(alert)
            except Exception as exc:
                logger.warning("Alert observer failed for %s: %s", alert.id, exc)
        return alert

    def _send_email(self, alert: Alert) -> bool:
        if self.sender is None or not self.destination:
            logger.warning("Alert email enabled but no sender or destination configured; skipping %s", alert.id)
            return False
        subject, body = render_alert_email(alert)
        try:
            self.sender.send(self.destination, subject, body)
        except Exception as exc:
            logger.error("Error sending alert email for %s: %s", alert.id, exc)
            return False
        logger.info("Alert email sent for: %s", alert.id)
        return True

    # ------------------------------------------------------------------
    # Per-entity entry points
    # ------------------------------------------------------------------

    def create_threat_alert(self, threat: Threat) -> Optional[Alert]:
        if threat.severity not in ALERTING_LEVELS:
            return None
        return self.create_alert(
            threat.user_id,
            "threat",
            threat.id,
            title=f"New {threat.severity} threat detected",
            message=f'Threat "{threat.name}" has been identified with {threat.severity} severity',
            alert_type="threat",
            severity=threat.severity,
        )

    def create_risk_alert(self, risk: Risk) -> Optional[Alert]:
        if risk.level not in ALERTING_LEVELS:
            return None
        return self.create_alert(
            risk.user_id,
            "risk",
            risk.id,
            title=f"{risk.level.capitalize()} risk identified",
            message=f'Risk "{risk.name}" with score {risk.score:.2f}',
            alert_type="risk",
            severity=risk.level,
        )

    def create_vulnerability_alert(self, vuln: Vulnerability) -> Optional[Alert]:
        if vuln.cvss_score is None or vuln.cvss_score < VULN_ALERT_CVSS:
            return None
        severity = "critical" if vuln.cvss_score >= VULN_CRITICAL_CVSS else "high"
        return self.create_alert(
            vuln.user_id,
            "vulnerability",
            vuln.id,
            title="High-severity vulnerability detected",
            message=f'Vulnerability "{vuln.name}" with CVSS score {vuln.cvss_score}',
            alert_type="vulnerability",
            severity=severity,
        )
