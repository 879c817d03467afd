import logging
import smtplib
from abc import ABC, abstractmethod
from email.message import EmailMessage

from config import EMAIL_FROM, SMTP_HOST, SMTP_PASSWORD, SMTP_PORT, SMTP_USER

logger = logging.getLogger(__name__)


class Mailer(ABC):
    """Sends one email; returns True when the message was handed off."""

    @abstractmethod
    def send(self, to: str, subject: str, text: str, html: str = None) -> bool:
        ...


class SmtpMailer(Mailer):
    def __init__(self, host=SMTP_HOST, port=SMTP_PORT, user=SMTP_USER, password=SMTP_PASSWORD, sender=EMAIL_FROM):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.sender = sender

    def send(self, to, subject, text, html=None):
        if not self.host or not self.sender:
            logger.error("SMTP host or sender address not configured; not sending to %s", to)
            return False

        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = to
        message["Subject"] = subject
        message.set_content(text)
        if html:
            message.add_alternative(html, subtype="html")

        try:
            with smtplib.SMTP(self.host, self.port, timeout=30) as smtp:
                smtp.starttls()
                if self.user:
                    smtp.login(self.user, self.password)
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError):
            logger.exception("Error sending email to %s", to)
            return False
        return True


def get_mailer() -> Mailer:
    return SmtpMailer()
