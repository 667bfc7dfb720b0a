"""
Email service using Resend for automation summary notifications.
"""

import asyncio
import logging
from typing import Optional

from replifast.config import get_settings

logger = logging.getLogger(__name__)


def send_automation_summary_email(
    to_email: str,
    business_name: str,
    auto_posted: int,
    awaiting_approval: int,
    errors: int = 0,
    dashboard_url: Optional[str] = None,
) -> bool:
    """Send the per-run automation summary via Resend. Returns True if sent, False if skipped."""
    settings = get_settings()
    if not settings.resend_api_key or not settings.from_email:
        logger.info("Resend not configured; skipping automation summary email")
        return False

    try:
        import resend
        resend.api_key = settings.resend_api_key

        link = dashboard_url or f"{settings.app_url.rstrip('/')}/reviews"
        subject = f"RepliFast: {auto_posted} replies posted for {business_name}"
        approval_str = ""
        if awaiting_approval:
            approval_str = (
                f"<p><strong>{awaiting_approval}</strong> drafted replies are waiting for your approval.</p>"
                f'<p><a href="{link}" style="color: #6366f1; font-weight: 600;">Review drafts</a></p>'
            )
        error_str = f"<p>{errors} reviews could not be processed automatically.</p>" if errors else ""
        html = f"""
        <p>Hello,</p>
        <p>Your review automation for {business_name} just ran.</p>
        <p><strong>Replies posted:</strong> {auto_posted}</p>
        {approval_str}
        {error_str}
        <p>The RepliFast team</p>
        """

        params = {
            "from": settings.from_email,
            "to": [to_email],
            "subject": subject,
            "html": html,
        }
        resend.Emails.send(params)
        logger.info(f"Automation summary email sent to {to_email}")
        return True
    except Exception as e:
        logger.exception(f"Failed to send automation summary email to {to_email}: {e}")
        return False


class AutomationNotifier:
    """Async wrapper; the Resend SDK is blocking, so sends run in a worker thread."""

    async def send_summary(
        self,
        to_email: str,
        business_name: str,
        auto_posted: int,
        awaiting_approval: int,
        errors: int = 0,
    ) -> bool:
        return await asyncio.to_thread(
            send_automation_summary_email,
            to_email,
            business_name,
            auto_posted,
            awaiting_approval,
            errors,
        )
