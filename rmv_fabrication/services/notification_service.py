"""
Workflow notification dispatch
Every workflow event reaches customers through notify(event_name, recipient_email, template_data).
Delivery is fire-and-forget: it never blocks or fails the state change that triggered it.
"""

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Optional

from ..config import EMAIL_WORKERS
from .email_service import send_email
from .email_templates import render

logger = logging.getLogger(__name__)


class EmailNotifier:
    """Renders the event's template and hands delivery to a background thread pool"""

    def __init__(self, executor: Optional[ThreadPoolExecutor] = None):
        self.executor = executor or ThreadPoolExecutor(
            max_workers=EMAIL_WORKERS, thread_name_prefix="notify"
        )

    def notify(self, event_name: str, recipient_email: Optional[str], template_data: dict) -> None:
        if not recipient_email:
            logger.debug(f"⚠️ No email address for {event_name} notification")
            return

        future = self.executor.submit(self._deliver, event_name, recipient_email, template_data)
        future.add_done_callback(
            lambda f: self._log_result(f, event_name, recipient_email)
        )

    @staticmethod
    def _deliver(event_name: str, recipient_email: str, template_data: dict) -> dict:
        subject, html = render(event_name, template_data)
        return send_email(to=recipient_email, subject=subject, html_content=html)

    @staticmethod
    def _log_result(future: Future, event_name: str, recipient_email: str) -> None:
        error = future.exception()
        if error:
            logger.error(f"❌ Failed to send {event_name} email to {recipient_email}: {error}")
        else:
            logger.info(f"✅ {event_name} email sent successfully to {recipient_email}")


_default_notifier: Optional[EmailNotifier] = None


def get_notifier() -> EmailNotifier:
    """Process-wide email notifier"""
    global _default_notifier
    if _default_notifier is None:
        _default_notifier = EmailNotifier()
    return _default_notifier


def dispatch(notifier, event_name: str, recipient_email: Optional[str], template_data: dict) -> bool:
    """Hand one event to ``notifier``, logging and swallowing any failure"""
    try:
        logger.info(f"📧 Dispatching {event_name} notification to {recipient_email}")
        notifier.notify(event_name, recipient_email, template_data)
        return True
    except Exception as e:
        logger.error(f"❌ Failed to dispatch {event_name} notification to {recipient_email}: {e}")
        return False
