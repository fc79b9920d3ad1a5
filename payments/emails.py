import logging

from django.conf import settings
from django.core.mail import EmailMultiAlternatives
from django.template.loader import render_to_string

logger = logging.getLogger(__name__)


def _fail_silently() -> bool:
    return getattr(settings, "EMAIL_FAIL_SILENTLY", False)


def _email_enabled() -> bool:
    return bool(getattr(settings, "PAYMENTS_EMAIL_ENABLED", False))


def _outcome(dispatched: bool, error=None) -> dict:
    return {"dispatched": dispatched, "error": error}


def send_payment_confirmation(*, user, course, order) -> dict:
    """Email the buyer a receipt for a paid order.

    Returns ``{"dispatched": bool, "error": str | None}`` and never raises:
    the payment has already been recorded, so a mail failure is only
    reported back to the caller.
    """
    if not _email_enabled():
        return _outcome(False)
    if not user or not getattr(user, "email", None):
        return _outcome(False, "User email address is required to send payment confirmation")
    if not course or not getattr(course, "title", None):
        return _outcome(False, "Course title is required to send payment confirmation")
    if not order.gateway_order_id or not order.gateway_payment_id:
        return _outcome(False, "Order identifiers are required to send payment confirmation")

    try:
        context = {
            "user_name": user.get_full_name() or user.username or "there",
            "course_title": course.title,
            "amount": f"{order.amount:.2f}",
            "currency": (order.currency or "INR").upper(),
            "order_id": order.gateway_order_id,
            "payment_id": order.gateway_payment_id,
            "signature": getattr(settings, "PAYMENTS_EMAIL_SIGNATURE", ""),
        }
        subject = f"Payment confirmed for {course.title}"
        text = render_to_string("emails/payment_confirmation.txt", context)
        html = render_to_string("emails/payment_confirmation.html", context)
        from_email = getattr(settings, "DEFAULT_FROM_EMAIL", None) or getattr(settings, "EMAIL_HOST_USER", None)

        msg = EmailMultiAlternatives(subject, text, from_email, [user.email])
        msg.attach_alternative(html, "text/html")
        sent = msg.send(fail_silently=_fail_silently())
    except Exception as e:
        logger.exception("Failed to send payment confirmation for order %s", order.gateway_order_id)
        return _outcome(False, str(e) or "Email dispatch failed")

    if not sent:
        return _outcome(False, "Email transport did not accept the message")
    logger.info("Payment confirmation sent for order %s", order.gateway_order_id)
    return _outcome(True)
