from __future__ import annotations

import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, make_msgid

from ledgerbook.config import settings
from ledgerbook.services.channels import ChannelError, SendResult

LOGGER = logging.getLogger(__name__)

OTP_SUBJECT = "Your LedgerBook OTP Code"


class SmtpEmailSender:
    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        from_email: str,
        from_name: str = "LedgerBook",
        secure: bool = False,
        timeout: float = 10,
    ) -> None:
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._from_email = from_email
        self._from_name = from_name
        self._secure = secure
        self._timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self._host and self._username and self._password)

    def send(self, code: str, destination: str, ttl_minutes: int) -> SendResult:
        if not self.configured:
            raise ChannelError(
                "SMTP configuration missing. Set SMTP_USER and SMTP_PASSWORD."
            )

        message = build_otp_message(
            code,
            ttl_minutes,
            sender=formataddr((self._from_name, self._from_email)),
            recipient=destination,
        )
        message_id = make_msgid(domain=self._from_email.rpartition("@")[2] or None)
        message["Message-ID"] = message_id

        try:
            with self._connect() as server:
                server.login(self._username, self._password)
                server.sendmail(self._from_email, [destination], message.as_string())
        except (smtplib.SMTPException, OSError) as exc:
            LOGGER.error("SMTP send failed to=%s error=%s", destination, exc)
            raise ChannelError(f"Failed to send email: {exc}") from exc

        LOGGER.info("OTP email sent to=%s message_id=%s", destination, message_id)
        return SendResult(success=True, provider_message_id=message_id)

    def verify_connection(self) -> bool:
        if not self.configured:
            LOGGER.warning("SMTP is not configured; email OTP delivery is disabled")
            return False
        try:
            with self._connect() as server:
                server.login(self._username, self._password)
        except (smtplib.SMTPException, OSError) as exc:
            LOGGER.error("SMTP verification failed host=%s error=%s", self._host, exc)
            return False
        LOGGER.info("SMTP server %s is ready to send emails", self._host)
        return True

    def _connect(self) -> smtplib.SMTP:
        context = ssl.create_default_context()
        if self._secure:
            return smtplib.SMTP_SSL(
                self._host, self._port, timeout=self._timeout, context=context
            )
        server = smtplib.SMTP(self._host, self._port, timeout=self._timeout)
        try:
            server.starttls(context=context)
        except (smtplib.SMTPException, OSError):
            server.close()
            raise
        return server


def build_otp_message(
    code: str, ttl_minutes: int, sender: str, recipient: str
) -> MIMEMultipart:
    html = f"""
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
  <div style="background: #2f4bff; padding: 30px; text-align: center; border-radius: 10px 10px 0 0;">
    <h1 style="color: white; margin: 0; font-size: 28px;">LedgerBook</h1>
  </div>
  <div style="background: #f9fafb; padding: 30px; border-radius: 0 0 10px 10px; border: 1px solid #e5e7eb;">
    <h2 style="color: #111827; margin-top: 0;">Your OTP Code</h2>
    <p style="color: #6b7280; font-size: 16px; line-height: 1.6;">
      Use the following code to verify your email address:
    </p>
    <div style="background: white; padding: 20px; border-radius: 8px; text-align: center; margin: 30px 0; border: 2px dashed #2f4bff;">
      <div style="font-size: 36px; font-weight: bold; color: #2f4bff; letter-spacing: 8px; font-family: 'Courier New', monospace;">
        {code}
      </div>
    </div>
    <p style="color: #6b7280; font-size: 14px; line-height: 1.6;">
      This code will expire in {ttl_minutes} minutes.
    </p>
    <p style="color: #9ca3af; font-size: 12px; line-height: 1.6; margin-top: 30px; padding-top: 20px; border-top: 1px solid #e5e7eb;">
      If you didn't request this code, please ignore this email.
    </p>
  </div>
</div>
"""
    text = (
        "LedgerBook - Your OTP Code\n\n"
        f"Use the following code to verify your email address: {code}\n\n"
        f"This code will expire in {ttl_minutes} minutes.\n\n"
        "If you didn't request this code, please ignore this email."
    )

    message = MIMEMultipart("alternative")
    message["Subject"] = OTP_SUBJECT
    message["From"] = sender
    message["To"] = recipient
    message.attach(MIMEText(text, "plain", "utf-8"))
    message.attach(MIMEText(html, "html", "utf-8"))
    return message


email_sender = SmtpEmailSender(
    host=settings.smtp_host,
    port=settings.smtp_port,
    username=settings.smtp_user,
    password=settings.smtp_password,
    from_email=settings.smtp_from_email,
    from_name=settings.smtp_from_name,
    secure=settings.smtp_secure,
    timeout=settings.channel_timeout_seconds,
)
