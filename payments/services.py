"""Order lifecycle: opening a Razorpay order and settling it.

Two independent paths can settle the same order, in any order and any
number of times: the browser posting back the checkout result
(:func:`verify_payment`) and Razorpay's webhook (:func:`handle_webhook`).
Neither takes a lock. Every write out of ``pending`` is a conditional
update on ``status="pending"``, so only the first writer changes the row
and the other sees zero affected rows.
"""

import json
import logging

from django.conf import settings
from django.db.models import F
from django.utils import timezone

from courses.models import Course

from .emails import send_payment_confirmation
from .errors import (
    Conflict,
    Forbidden,
    InvalidRequest,
    InvalidSignature,
    InvalidState,
    NotFound,
    VerificationFailed,
)
from .gateway import get_gateway
from .models import Order
from .signatures import verify_payment_signature, verify_webhook_signature
from .utils import from_minor_units, generate_receipt, to_minor_units

logger = logging.getLogger(__name__)

PAID_PAYMENT_STATUSES = {"captured", "authorized"}
FAILED_PAYMENT_STATUSES = {"failed", "refunded", "cancelled"}


def map_payment_status(gateway_status):
    """Local status implied by a Razorpay payment status, or None for no change."""
    s = str(gateway_status or "").lower()
    if s in PAID_PAYMENT_STATUSES:
        return Order.Status.PAID
    if s in FAILED_PAYMENT_STATUSES:
        return Order.Status.FAILED
    return None


def _currency():
    return ((getattr(settings, "RAZORPAY", {}) or {}).get("CURRENCY") or "INR").upper()


def _transition(order: Order, status: str, **fields) -> bool:
    """Move ``order`` out of ``pending``. Returns False if another writer got there first.

    ``order`` is refreshed from the database either way.
    """
    now = timezone.now()
    if status == Order.Status.PAID:
        fields.setdefault("verified_at", now)
    updated = Order.objects.filter(pk=order.pk, status=Order.Status.PENDING).update(
        status=status, updated_at=now, **fields
    )
    order.refresh_from_db()
    if updated:
        logger.info("Order %s -> %s", order.gateway_order_id, status)
    return bool(updated)


def _get_course(course_id) -> Course:
    try:
        pk = int(course_id)
    except (TypeError, ValueError):
        raise InvalidRequest("Invalid course identifier")
    course = Course.objects.filter(pk=pk).first()
    if course is None:
        raise NotFound("Course not found")
    return course


def create_order(*, user, course_id, gateway=None) -> dict:
    """Open a Razorpay order for ``course_id`` and record it as pending.

    Nothing is persisted when Razorpay rejects the request.
    """
    course = _get_course(course_id)
    # The stored amount is what Razorpay charges, not the raw catalogue price.
    minor = to_minor_units(course.price) if course.price is not None else 0
    if minor <= 0:
        raise InvalidState("Course price must be greater than zero to initiate payment")

    if Order.objects.filter(user=user, course=course, status=Order.Status.PAID).exists():
        raise Conflict("You have already purchased this course")

    gateway = gateway or get_gateway()
    currency = _currency()
    receipt = generate_receipt()
    intent = gateway.create_intent(
        minor,
        currency,
        receipt,
        {"course_id": course.pk, "user_id": user.pk},
    )

    order = Order.objects.create(
        user=user,
        course=course,
        amount=from_minor_units(minor),
        currency=currency,
        receipt=intent.get("receipt") or receipt,
        gateway_order_id=intent["id"],
        status=Order.Status.PENDING,
    )
    logger.info("Order %s created for user=%s course=%s", order.gateway_order_id, user.pk, course.pk)

    return {"order": order, "course": course, "intent": intent, "key_id": gateway.key_id}


def verify_payment(*, user, gateway_order_id, payment_id, signature) -> dict:
    """Settle an order from the checkout callback.

    Returns ``{"order", "course", "already_verified", "email"}``. A replay
    for a paid order returns it untouched without checking the signature or
    emailing again.
    """
    for value in (gateway_order_id, payment_id, signature):
        if not isinstance(value, str) or not value.strip():
            raise InvalidRequest("Invalid payment verification payload")

    order = Order.objects.select_related("course", "user").filter(gateway_order_id=gateway_order_id).first()
    if order is None:
        raise NotFound("Order not found")
    if order.user_id != user.pk:
        raise Forbidden("You are not authorized to verify this payment")

    no_email = {"dispatched": False, "error": None}
    if order.is_paid:
        return {"order": order, "course": order.course, "already_verified": True, "email": no_email}

    if not verify_payment_signature(gateway_order_id, payment_id, signature):
        logger.warning("Signature mismatch on checkout callback for order %s", gateway_order_id)
        _transition(order, Order.Status.FAILED)
        raise VerificationFailed("Payment verification failed")

    applied = _transition(
        order,
        Order.Status.PAID,
        gateway_payment_id=payment_id,
        gateway_signature=signature,
    )
    if not applied:
        # The webhook (or a parallel callback) settled it between our read and write.
        if order.is_paid:
            return {"order": order, "course": order.course, "already_verified": True, "email": no_email}
        raise InvalidState("This order can no longer be paid")

    email = send_payment_confirmation(user=order.user, course=order.course, order=order)
    if not email["dispatched"] and email["error"]:
        logger.warning("Payment confirmation not sent for order %s: %s", order.gateway_order_id, email["error"])

    return {"order": order, "course": order.course, "already_verified": False, "email": email}


def apply_gateway_payment(order: Order, payment: dict, signature: str = "") -> bool:
    """Apply a Razorpay payment entity to ``order``. Returns True if the row changed.

    Used by the webhook and by the reconcile command; neither sends email.
    """
    status = map_payment_status(payment.get("status"))
    if status is None or status == order.status:
        return False

    fields = {}
    if payment.get("id"):
        fields["gateway_payment_id"] = payment["id"]
    if status == Order.Status.PAID and signature:
        fields["gateway_signature"] = signature
    return _transition(order, status, **fields)


def handle_webhook(*, raw_body: bytes, signature: str) -> dict:
    """Reconcile an order from a Razorpay webhook delivery.

    Razorpay delivers at least once, so anything that can be classified is
    acknowledged with ``processed=False`` and a reason instead of an error.
    Only a bad signature raises.
    """
    if not verify_webhook_signature(raw_body, signature):
        logger.warning("Rejected Razorpay webhook with invalid signature")
        raise InvalidSignature("Invalid Razorpay webhook signature")

    try:
        data = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        data = None

    payload = data.get("payload") if isinstance(data, dict) else None
    payment = payload.get("payment") if isinstance(payload, dict) else None
    payment = payment.get("entity") if isinstance(payment, dict) else None
    if not isinstance(payment, dict) or not payment.get("order_id"):
        logger.info("Webhook without a payment entity ignored")
        return {"processed": False, "reason": "malformed_payload"}

    event = data.get("event")
    order = Order.objects.filter(gateway_order_id=payment["order_id"]).first()
    if order is None:
        logger.info("Webhook %s for unknown order %s ignored", event, payment["order_id"])
        return {"processed": False, "reason": "unknown_order", "event": event}

    if not apply_gateway_payment(order, payment, signature):
        return {"processed": False, "reason": "no_state_change", "event": event, "order": order}

    return {"processed": True, "reason": "applied", "event": event, "order": order}


def list_user_orders(user):
    """Paid orders of ``user``, most recently verified first."""
    return list(
        Order.objects.filter(user=user, status=Order.Status.PAID)
        .select_related("course")
        .order_by(F("verified_at").desc(nulls_last=True), "-created_at")
    )
