import logging
import smtplib
from email.message import EmailMessage
from typing import Optional

from starlette.concurrency import run_in_threadpool

from userbase.core.config import Settings
from userbase.core.errors import ConfigurationError, DependencyError

logger = logging.getLogger(__name__)

LOGIN_SUBJECT = "Your Skatehive login link"


class SmtpMailer:
    """Delivers magic-link emails over SMTP."""

    def __init__(
        self,
        host: str,
        port: int,
        username: Optional[str] = None,
        password: Optional[str] = None,
        sender: Optional[str] = None,
        use_ssl: bool = False,
        timeout: float = 10.0,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender or username
        self.use_ssl = use_ssl
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "SmtpMailer":
        return cls(
            host=settings.SMTP_HOST,
            port=settings.SMTP_PORT,
            username=settings.EMAIL_USER,
            password=settings.EMAIL_PASS,
            sender=settings.EMAIL_USER or settings.EMAIL_FROM,
            use_ssl=settings.SMTP_SECURE,
        )

    @property
    def configured(self) -> bool:
        return bool(self.username and self.password)

    def build_login_message(self, to: str, link: str) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = LOGIN_SUBJECT
        msg["From"] = self.sender
        msg["To"] = to
        msg.set_content(f"Click to sign in: {link}")
        msg.add_alternative(
            f'<p>Click to sign in:</p><p><a href="{link}">{link}</a></p>',
            subtype="html",
        )
        return msg

    def _deliver(self, msg: EmailMessage) -> None:
        if self.use_ssl:
            server = smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout)
        else:
            server = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
        with server:
            server.ehlo()
            if not self.use_ssl:
                server.starttls()
            server.login(self.username, self.password)
            server.send_message(msg)

    async def send_login_link(self, to: str, link: str) -> None:
        """
        Email a login link.

        Raises:
            ConfigurationError: No SMTP credentials are configured
            DependencyError: The SMTP exchange failed
        """
        if not self.configured:
            raise ConfigurationError("Email transport is not configured")

        msg = self.build_login_message(to, link)
        try:
            # smtplib blocks; keep it off the event loop
            await run_in_threadpool(self._deliver, msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send login email: {e}")
            raise DependencyError("Failed to send login email", details=str(e))
        logger.info("Sent login email")
