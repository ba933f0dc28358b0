import smtplib
from email.mime.text import MIMEText

import structlog
from starlette.concurrency import run_in_threadpool

from shared.config.settings import Settings

logger = structlog.get_logger(__name__)


class OtpDeliveryError(Exception):
    pass


class SmtpOtpSender:
    """Sends the code by email. smtplib blocks, so it runs in the threadpool."""

    subject = "Your registration OTP"

    def __init__(self, settings: Settings):
        self.settings = settings

    async def __call__(self, to_email: str, otp: str, ttl_minutes: int) -> None:
        if not self.settings.smtp_host:
            raise OtpDeliveryError("No SMTP configuration provided")
        await run_in_threadpool(self._send, to_email, otp, ttl_minutes)

    def _send(self, to_email: str, otp: str, ttl_minutes: int) -> None:
        msg = MIMEText(
            f"<p>Your OTP is <b>{otp}</b>. It expires in {ttl_minutes} minutes.</p>", "html"
        )
        msg["Subject"] = self.subject
        msg["From"] = self.settings.mail_from
        msg["To"] = to_email

        try:
            if self.settings.smtp_port == 465:
                server = smtplib.SMTP_SSL(self.settings.smtp_host, self.settings.smtp_port, timeout=20)
            else:
                server = smtplib.SMTP(self.settings.smtp_host, self.settings.smtp_port, timeout=20)
                server.starttls()
            with server:
                if self.settings.smtp_user:
                    server.login(self.settings.smtp_user, self.settings.smtp_pass)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("otp_email_failed", to=to_email, error=str(e))
            raise OtpDeliveryError(str(e)) from e
