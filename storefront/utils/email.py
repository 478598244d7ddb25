import logging
import smtplib
from email.message import EmailMessage
from typing import Optional
from storefront.core.config import settings

logger = logging.getLogger(__name__)


def _send_email_smtp(msg: EmailMessage) -> None:
    """
    Send an email message over SMTP.
    This is intended to be called from Celery workers, not request handlers.
    """
    with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=30) as server:
        server.ehlo()
        server.starttls()
        server.ehlo()
        if settings.SMTP_USER and settings.SMTP_PASSWORD:
            server.login(settings.SMTP_USER, settings.SMTP_PASSWORD)
        server.send_message(msg)


def enqueue_task(task, *args) -> None:
    """
    Hand a task to the Celery broker.

    A broker outage must not fail the request that triggered the email, so
    publishing errors are logged and dropped here.
    """
    try:
        result = task.delay(*args)
        logger.info(
            "Task queued",
            extra={"task": task.name, "task_id": result.id},
        )
    except Exception as exc:
        logger.exception(
            "Failed to queue task",
            extra={"task": getattr(task, "name", str(task)), "error": str(exc)},
        )


def send_email_async(to_email: str, subject: str, body: str, html: Optional[str] = None) -> None:
    from storefront.tasks.email_tasks import send_email_task

    enqueue_task(send_email_task, to_email, subject, body, html)


def send_otp_email(to_email: str, code: str, purpose_label: str, ttl_seconds: int) -> None:
    from storefront.utils.email_templates import otp_template

    minutes = max(1, ttl_seconds // 60)
    unit = "minute" if minutes == 1 else "minutes"
    send_email_async(
        to_email,
        f"{purpose_label} OTP",
        f"Your OTP for {purpose_label.lower()} is {code}. It will expire in {minutes} {unit}.",
        otp_template(code, purpose_label, ttl_seconds),
    )


def send_order_confirmation_email(order_id: int) -> None:
    from storefront.tasks.email_tasks import send_order_confirmation

    enqueue_task(send_order_confirmation, order_id)


def send_item_status_email(order_item_id: int) -> None:
    from storefront.tasks.email_tasks import send_item_status_update

    enqueue_task(send_item_status_update, order_item_id)
