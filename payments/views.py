import json
import logging

from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST

from accounts.auth import jwt_required

from .errors import InvalidRequest, InvalidSignature, PaymentError
from .models import Order
from .services import create_order, handle_webhook, list_user_orders, verify_payment

logger = logging.getLogger(__name__)


def _json_body(request):
    try:
        body = json.loads(request.body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        raise InvalidRequest("Invalid JSON body")
    if not isinstance(body, dict):
        raise InvalidRequest("Invalid JSON body")
    return body


def _field(body, name, alias):
    # Older checkout clients post camelCase keys.
    return body[name] if name in body else body.get(alias)


def _error_response(error: PaymentError) -> JsonResponse:
    return JsonResponse({"ok": False, "error": error.as_dict()}, status=error.status_code)


def _order_summary(order: Order) -> dict:
    # Never includes gateway_signature.
    return {
        "id": str(order.pk),
        "provider": order.provider,
        "amount": order.amount,
        "currency": order.currency,
        "status": order.status,
        "gateway_order_id": order.gateway_order_id,
        "gateway_payment_id": order.gateway_payment_id,
        "verified_at": order.verified_at,
        "created_at": order.created_at,
        "updated_at": order.updated_at,
    }


def _course_summary(course) -> dict:
    if course is None:
        return None
    return {
        "id": course.pk,
        "title": course.title,
        "price": course.price,
        "category": course.category,
        "description": course.description,
    }


@csrf_exempt
@require_POST
@jwt_required
def create_order_view(request):
    try:
        body = _json_body(request)
        course_id = _field(body, "course_id", "courseId")
        if not course_id:
            raise InvalidRequest("Course is required")
        result = create_order(user=request.user, course_id=course_id)
    except PaymentError as e:
        return _error_response(e)

    order, intent = result["order"], result["intent"]
    return JsonResponse({
        "message": "Order created successfully",
        "order": _order_summary(order),
        "course": _course_summary(result["course"]),
        "payment": {
            "provider": order.provider,
            "credentials": {"key_id": result["key_id"]},
            "order": {
                "id": intent["id"],
                "amount": intent["amount"],
                "currency": intent["currency"],
                "receipt": intent["receipt"],
                "status": intent["status"],
            },
        },
    }, status=201)


@csrf_exempt
@require_POST
@jwt_required
def verify_payment_view(request):
    try:
        body = _json_body(request)
        result = verify_payment(
            user=request.user,
            gateway_order_id=_field(body, "razorpay_order_id", "razorpayOrderId"),
            payment_id=_field(body, "razorpay_payment_id", "razorpayPaymentId"),
            signature=_field(body, "razorpay_signature", "razorpaySignature"),
        )
    except PaymentError as e:
        return _error_response(e)

    already = result["already_verified"]
    return JsonResponse({
        "message": "Payment already verified" if already else "Payment verified successfully",
        "already_verified": already,
        "order": _order_summary(result["order"]),
        "course": _course_summary(result["course"]),
        "email": result["email"],
    })


@csrf_exempt
@require_POST
def razorpay_webhook_view(request):
    """Razorpay server-to-server notifications.

    Anything we can classify gets a 200 so Razorpay stops redelivering; only
    a missing or wrong signature is answered with a 4xx.
    """
    signature = request.headers.get("X-Razorpay-Signature", "")
    if not signature:
        return JsonResponse({"success": False, "message": "Missing Razorpay signature header"}, status=400)

    try:
        result = handle_webhook(raw_body=request.body, signature=signature)
    except InvalidSignature as e:
        return JsonResponse({"success": False, "message": e.message}, status=e.status_code)
    except PaymentError as e:
        logger.error("Razorpay webhook could not be processed: %s", e.message)
        return JsonResponse({"success": False, "message": e.message}, status=e.status_code)

    return JsonResponse({"success": True, "processed": result["processed"], "reason": result["reason"]})


@require_GET
@jwt_required
def my_orders_view(request):
    orders = []
    for order in list_user_orders(request.user):
        summary = _order_summary(order)
        summary["course"] = _course_summary(order.course)
        orders.append(summary)
    return JsonResponse({"message": "Orders fetched successfully", "orders": orders})
