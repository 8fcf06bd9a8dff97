"""SMTP transport for briefing emails."""

import smtplib
from email.message import EmailMessage
from email.utils import formatdate, make_msgid, parseaddr

from briefly.utils.logging import get_logger

logger = get_logger(__name__)

SMTP_SSL_PORT = 465


class SmtpMailer:
    """Sends multipart briefing emails over SMTP.

    Port 465 uses implicit TLS. Any other port starts in plain text and is
    upgraded with STARTTLS when credentials are configured. A connection is
    opened per message; sends are blocking and meant to run in a worker thread.
    """

    def __init__(
        self,
        host: str,
        port: int,
        sender: str,
        username: str | None = None,
        password: str | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._host = host
        self._port = port
        self._sender = sender
        self._username = username
        self._password = password
        self._timeout = timeout

    def build_message(self, to: str, subject: str, html_content: str, text_content: str) -> EmailMessage:
        """Assemble a text/plain + text/html alternative message."""
        domain = parseaddr(self._sender)[1].partition("@")[2] or None
        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = self._sender
        message["To"] = to
        message["Date"] = formatdate(localtime=False)
        message["Message-ID"] = make_msgid(domain=domain)
        message.set_content(text_content)
        message.add_alternative(html_content, subtype="html")
        return message

    def send_email(self, to: str, subject: str, html_content: str, text_content: str) -> None:
        """Deliver one email. SMTP errors propagate to the caller."""
        message = self.build_message(to, subject, html_content, text_content)
        logger.info("Sending email", to=to, subject=subject, message_id=message["Message-ID"])

        with self._connect() as server:
            if self._port != SMTP_SSL_PORT and self._username:
                server.starttls()
            if self._username and self._password:
                server.login(self._username, self._password)
            refused = server.send_message(message)

        if refused:
            raise smtplib.SMTPRecipientsRefused(refused)
        logger.info("Email sent", to=to)

    def _connect(self) -> smtplib.SMTP:
        if self._port == SMTP_SSL_PORT:
            return smtplib.SMTP_SSL(self._host, self._port, timeout=self._timeout)
        return smtplib.SMTP(self._host, self._port, timeout=self._timeout)
