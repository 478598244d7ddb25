from celery import Task
from celery.utils.log import get_task_logger
from email.message import EmailMessage
from typing import Optional

from storefront.core.celery_app import celery_app
from storefront.core.config import settings
from storefront.utils.email import _send_email_smtp
from storefront.utils.email_templates import (
    item_status_template,
    order_confirmation_template,
)

logger = get_task_logger(__name__)


# -------------------------------
# Base Task (Retry-safe)
# -------------------------------
class EmailTask(Task):
    """
    Base email task with retries and backoff for temporary SMTP failures.
    """
    autoretry_for = (Exception,)
    retry_kwargs = {"max_retries": 3}
    retry_backoff = True
    retry_backoff_max = 600  # 10 minutes
    retry_jitter = True
    acks_late = True


def build_email(
    *,
    to: str,
    subject: str,
    text: str,
    html: Optional[str] = None,
) -> EmailMessage:
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = f"{settings.EMAILS_FROM_NAME} <{settings.EMAILS_FROM_EMAIL}>"
    msg["To"] = to
    msg.set_content(text)

    if html:
        msg.add_alternative(html, subtype="html")

    return msg


# -------------------------------
# Generic (OTP codes)
# -------------------------------
@celery_app.task(base=EmailTask, bind=True)
def send_email_task(self, to_email: str, subject: str, body: str, html: Optional[str] = None):
    msg = build_email(to=to_email, subject=subject, text=body, html=html)
    _send_email_smtp(msg)
    logger.info("email_sent to=%s subject=%s", to_email, subject)


# -------------------------------
# Order Confirmation
# -------------------------------
@celery_app.task(base=EmailTask, bind=True)
def send_order_confirmation(self, order_id: int):
    from storefront.db.session import SessionLocal
    from storefront.models.order import Order

    db = SessionLocal()
    try:
        order = db.query(Order).filter(Order.id == order_id).first()
        if not order or not order.user:
            logger.error("order_confirmation_failed order_id=%s", order_id)
            return

        msg = build_email(
            to=order.user.email,
            subject=f"Order Placed - {order.order_number}",
            text=f"Your order {order.order_number} has been placed.",
            html=order_confirmation_template(order, order.user),
        )
        _send_email_smtp(msg)
        logger.info("order_confirmation_sent order_id=%s", order_id)
    finally:
        db.close()


# -------------------------------
# Item Status Update
# -------------------------------
@celery_app.task(base=EmailTask, bind=True)
def send_item_status_update(self, order_item_id: int):
    from storefront.db.session import SessionLocal
    from storefront.models.order import OrderItem

    db = SessionLocal()
    try:
        item = db.query(OrderItem).filter(OrderItem.id == order_item_id).first()
        if not item or not item.order.user:
            logger.error("item_status_email_failed order_item_id=%s", order_item_id)
            return

        order = item.order
        msg = build_email(
            to=order.user.email,
            subject=f"{item.product_name} is {item.status.value} - {order.order_number}",
            text=(
                f"The status of {item.product_name} in order {order.order_number} "
                f"is now {item.status.value}."
            ),
            html=item_status_template(order, item, order.user),
        )
        _send_email_smtp(msg)
        logger.info("item_status_email_sent order_item_id=%s", order_item_id)
    finally:
        db.close()
