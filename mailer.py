import logging
import smtplib
from email.message import EmailMessage

from config import Settings

logger = logging.getLogger(__name__)


class MailDeliveryError(Exception):
    pass


class Mailer:
    """Sends HTML mail over SMTP. One attempt per message, no retries."""

    def __init__(self, settings: Settings):
        self.host = settings.smtp_host
        self.port = settings.smtp_port
        self.username = settings.smtp_username
        self.password = settings.smtp_password
        self.use_tls = settings.smtp_use_tls
        self.sender = settings.mail_from

    def build_message(self, recipient: str, subject: str, html: str) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = recipient
        message["Subject"] = subject
        message.set_content("Відкрийте цей лист у клієнті з підтримкою HTML.")
        message.add_alternative(html, subtype="html")
        return message

    def send(self, recipient: str, subject: str, html: str) -> None:
        message = self.build_message(recipient, subject, html)
        try:
            with smtplib.SMTP(self.host, self.port, timeout=30) as smtp:
                if self.use_tls:
                    smtp.starttls()
                if self.username and self.password:
                    smtp.login(self.username, self.password)
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Failed to send '%s' to %s: %s", subject, recipient, e)
            raise MailDeliveryError(str(e)) from e
        logger.info("Sent '%s' to %s", subject, recipient)
