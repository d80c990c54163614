from abc import ABC, abstractmethod
import logging
import smtplib
from email.message import EmailMessage

logger = logging.getLogger(__name__)


class Mailer(ABC):
    @abstractmethod
    def send(self, to: str, subject: str, body: str) -> None:
        ...


class SmtpMailer(Mailer):
    def __init__(self, host, port=587, user=None, password=None, sender="no-reply@roadside.local"):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.sender = sender

    def send(self, to, subject, body):
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = to
        message["Subject"] = subject
        message.set_content(body)

        with smtplib.SMTP(self.host, self.port, timeout=10) as smtp:
            smtp.starttls()
            if self.user:
                smtp.login(self.user, self.password)
            smtp.send_message(message)
        logger.info("Sent '%s' to %s", subject, to)


class LogMailer(Mailer):
    """Used when no SMTP server is configured; the message only goes to the log."""

    def send(self, to, subject, body):
        logger.warning("SMTP not configured, mail to %s not sent: %s", to, subject)
        logger.debug("Mail body for %s:\n%s", to, body)
