"""
Notification sink: logs every event and optionally emails it
"""

import logging
import smtplib
import threading
from collections import deque
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Dict, List, Optional

from config.settings import NotificationConfig
from src.collaborators.interfaces import NotificationSink
from src.utils.helpers import utc_now

logger = logging.getLogger(__name__)


class NotificationSystem(NotificationSink):
    """Handle notifications for trigger, compliance and anomaly events"""

    def __init__(self, config: Optional[NotificationConfig] = None, history_size: int = 100):
        """Initialize Notification System

        Args:
            config: Notification configuration (email is off unless enabled)
            history_size: Number of recent notifications kept in memory
        """
        self.config = config or NotificationConfig()
        self.notification_history = deque(maxlen=history_size)
        self._lock = threading.Lock()

    def notify(self, subject: str, message: str, notification_type: str = 'info',
               payload: Optional[Dict[str, Any]] = None) -> None:
        """Send notification

        Args:
            subject: Notification subject
            message: Notification message
            notification_type: Type of notification (info, warning, error)
            payload: Structured event data
        """
        if not self.config.enabled:
            return

        notification = {
            'timestamp': utc_now(),
            'subject': subject,
            'message': message,
            'type': notification_type,
            'payload': payload or {}
        }

        with self._lock:
            self.notification_history.append(notification)

        if notification_type == 'error':
            logger.error(f"{subject}: {message}")
        elif notification_type == 'warning':
            logger.warning(f"{subject}: {message}")
        else:
            logger.info(f"{subject}: {message}")

        if self.config.email_enabled and self.config.recipients:
            self._send_email(subject, message)

    def recent(self, limit: int = 20) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self.notification_history)[-limit:]

    def _send_email(self, subject: str, message: str):
        """Send email notification; delivery failures are logged, never raised"""
        try:
            msg = MIMEMultipart()
            msg['From'] = self.config.sender_email
            msg['To'] = ', '.join(self.config.recipients)
            msg['Subject'] = f"[Maintenance Engine] {subject}"

            body = f"""
            Timestamp: {utc_now()}

            {message}

            ---
            Automated notification from the Maintenance Trigger Engine
            """

            msg.attach(MIMEText(body, 'plain'))

            with smtplib.SMTP(self.config.smtp_server, self.config.smtp_port) as server:
                if self.config.use_tls:
                    server.starttls()
                if self.config.sender_email and self.config.sender_password:
                    server.login(self.config.sender_email, self.config.sender_password)
                server.send_message(msg)

        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email notification: {str(e)}")
