"""E-mail sender: verification codes and account notices over SMTP."""

import asyncio
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from ..utils.logging import get_logger

logger = get_logger("notifications.email")

_EMAIL_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<style>
body {{
    margin: 0;
    padding: 0;
    background-color: #f5f7fb;
    color: #1f2933;
    font-family: 'Segoe UI', Arial, sans-serif;
}}
.container {{
    max-width: 560px;
    margin: 0 auto;
    padding: 24px;
}}
.header {{
    background-color: #1d4ed8;
    color: #ffffff;
    padding: 18px;
    text-align: center;
    font-size: 18px;
    font-weight: 600;
}}
.body-content {{
    background-color: #ffffff;
    border: 1px solid #e4e7eb;
    padding: 24px;
    line-height: 1.6;
}}
.code {{
    font-size: 28px;
    letter-spacing: 6px;
    font-weight: 700;
    text-align: center;
    margin: 16px 0;
}}
.footer {{
    padding: 12px;
    text-align: center;
    font-size: 11px;
    color: #7b8794;
}}
</style>
</head>
<body>
<div class="container">
    <div class="header">{app_name}</div>
    <div class="body-content">
        {body}
    </div>
    <div class="footer">Automated message, please do not reply.</div>
</div>
</body>
</html>"""


class EmailSender:
    """Sends HTML e-mail via SMTP.

    The SMTP exchange runs in a thread executor so the event loop is never
    blocked. Without an SMTP host the message is only logged, which is what
    development and test setups rely on.
    """

    def __init__(self, config: dict, app_name: str = "MEDBANK"):
        self._config = config
        self._app_name = app_name
        self.outbox: list[dict] = []

    @property
    def enabled(self) -> bool:
        return bool(self._config.get("host"))

    async def send(self, to: str, subject: str, body_html: str) -> bool:
        """Send an HTML email. Returns True when delivered (or logged in dry mode)."""
        if not to:
            logger.error("email_missing_recipient", subject=subject)
            return False

        full_html = _EMAIL_TEMPLATE.format(app_name=self._app_name, body=body_html)

        if not self.enabled:
            self.outbox.append({"to": to, "subject": subject, "html": full_html})
            logger.info("email_dry_run", to=to, subject=subject)
            return True

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._send_sync, to, subject, full_html)
            logger.info("email_sent", to=to, subject=subject)
            return True
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("email_send_error", to=to, error=str(exc))
            return False

    async def send_verification_code(self, to: str, code: str, ttl_minutes: int) -> bool:
        body = (
            "<p>Welcome! Use the code below to verify your e-mail address.</p>"
            f'<div class="code">{code}</div>'
            f"<p>This code expires in {ttl_minutes} minutes.</p>"
        )
        return await self.send(to, "Your verification code", body)

    def _send_sync(self, to: str, subject: str, html_body: str) -> None:
        """Synchronous SMTP send, executed in a thread pool."""
        host = self._config["host"]
        port = self._config.get("port", 587)
        username = self._config.get("username", "")
        password = self._config.get("password", "")
        from_addr = self._config.get("from_addr") or username

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = from_addr
        msg["To"] = to
        msg.attach(MIMEText(html_body, "html", "utf-8"))

        with smtplib.SMTP(host, port, timeout=30) as server:
            server.ehlo()
            if port != 25:
                server.starttls()
                server.ehlo()
            if username and password:
                server.login(username, password)
            server.sendmail(from_addr, [to], msg.as_string())
