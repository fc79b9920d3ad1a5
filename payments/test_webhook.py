import hashlib
import hmac
import itertools
import json
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core import mail
from django.test import TestCase, override_settings
from django.urls import reverse

from courses.models import Course

from . import services
from .errors import InvalidSignature
from .models import Order

WEBHOOK_SECRET = b"test-webhook-secret"


def webhook_body(order_id, status="captured", payment_id="pay_1", event="payment.captured"):
    return json.dumps({
        "entity": "event",
        "event": event,
        "payload": {
            "payment": {
                "entity": {
                    "id": payment_id,
                    "order_id": order_id,
                    "status": status,
                    "amount": 4999,
                    "currency": "INR",
                }
            }
        },
    }).encode()


def webhook_sig(body: bytes) -> str:
    return hmac.new(WEBHOOK_SECRET, body, hashlib.sha256).hexdigest()


def payment_sig(order_id, payment_id):
    return hmac.new(b"test-key-secret", f"{order_id}|{payment_id}".encode(), hashlib.sha256).hexdigest()


class WebhookTestBase(TestCase):
    def setUp(self):
        self.user = get_user_model().objects.create_user("asha", email="asha@example.com", password="pw")
        self.course = Course.objects.create(title="Intro to Django", description="d", category="web", price=Decimal("49.99"))

    def make_order(self, gateway_order_id="gw_1", **extra):
        return Order.objects.create(
            user=self.user, course=self.course, amount=self.course.price, currency="INR",
            receipt=f"r_{gateway_order_id}", gateway_order_id=gateway_order_id, **extra,
        )

    def deliver(self, body: bytes):
        return services.handle_webhook(raw_body=body, signature=webhook_sig(body))


class HandleWebhookTests(WebhookTestBase):
    def test_captured_marks_pending_order_paid(self):
        self.make_order()
        result = self.deliver(webhook_body("gw_1"))

        self.assertTrue(result["processed"])
        self.assertEqual(result["reason"], "applied")
        self.assertEqual(result["event"], "payment.captured")
        order = Order.objects.get()
        self.assertEqual(order.status, Order.Status.PAID)
        self.assertEqual(order.gateway_payment_id, "pay_1")
        self.assertIsNotNone(order.verified_at)
        # Confirmation email only goes out from the checkout callback.
        self.assertEqual(len(mail.outbox), 0)

    def test_authorized_counts_as_paid(self):
        self.make_order()
        self.deliver(webhook_body("gw_1", status="authorized", event="payment.authorized"))
        self.assertEqual(Order.objects.get().status, Order.Status.PAID)

    def test_failed_marks_pending_order_failed(self):
        self.make_order()
        result = self.deliver(webhook_body("gw_1", status="failed", event="payment.failed"))
        self.assertTrue(result["processed"])
        order = Order.objects.get()
        self.assertEqual(order.status, Order.Status.FAILED)
        self.assertIsNone(order.verified_at)

    def test_unmapped_status_changes_nothing(self):
        self.make_order()
        result = self.deliver(webhook_body("gw_1", status="created"))
        self.assertEqual(result["reason"], "no_state_change")
        self.assertEqual(Order.objects.get().status, Order.Status.PENDING)

    def test_redelivery_is_a_no_op(self):
        self.make_order()
        body = webhook_body("gw_1")
        self.deliver(body)
        first = Order.objects.get()

        result = self.deliver(body)
        self.assertFalse(result["processed"])
        self.assertEqual(result["reason"], "no_state_change")
        self.assertEqual(Order.objects.get().updated_at, first.updated_at)

    def test_captured_after_client_path_leaves_record_unchanged(self):
        self.make_order()
        services.verify_payment(
            user=self.user, gateway_order_id="gw_1", payment_id="pay_1", signature=payment_sig("gw_1", "pay_1"),
        )
        before = Order.objects.get()

        result = self.deliver(webhook_body("gw_1"))
        self.assertFalse(result["processed"])
        self.assertEqual(result["reason"], "no_state_change")
        after = Order.objects.get()
        self.assertEqual(
            (after.status, after.gateway_payment_id, after.gateway_signature, after.amount, after.updated_at),
            (before.status, before.gateway_payment_id, before.gateway_signature, before.amount, before.updated_at),
        )

    def test_failure_signal_after_paid_is_dropped(self):
        self.make_order(status=Order.Status.PAID, gateway_payment_id="pay_1")
        result = self.deliver(webhook_body("gw_1", status="refunded", event="payment.refunded"))
        self.assertEqual(result["reason"], "no_state_change")
        self.assertEqual(Order.objects.get().status, Order.Status.PAID)

    def test_unknown_order(self):
        result = self.deliver(webhook_body("gw_elsewhere"))
        self.assertEqual(result, {"processed": False, "reason": "unknown_order", "event": "payment.captured"})

    def test_payload_without_payment_entity(self):
        body = json.dumps({"event": "order.paid", "payload": {"order": {"entity": {"id": "gw_1"}}}}).encode()
        self.assertEqual(self.deliver(body), {"processed": False, "reason": "malformed_payload"})

    def test_signed_garbage(self):
        self.assertEqual(self.deliver(b"not json"), {"processed": False, "reason": "malformed_payload"})
        self.assertEqual(self.deliver(b"[1, 2]"), {"processed": False, "reason": "malformed_payload"})

    def test_bad_signature_touches_nothing(self):
        self.make_order()
        with self.assertRaises(InvalidSignature):
            services.handle_webhook(raw_body=webhook_body("gw_1"), signature="0" * 64)
        self.assertEqual(Order.objects.get().status, Order.Status.PENDING)


class ConvergenceTests(WebhookTestBase):
    """Any interleaving of duplicated callbacks and webhooks ends in the same paid row."""

    def test_all_orderings_converge(self):
        steps = ["client", "client", "webhook", "webhook"]
        orderings = sorted(set(itertools.permutations(steps)))
        for n, ordering in enumerate(orderings):
            gw = f"gw_{n}"
            with self.subTest(ordering=ordering):
                self.make_order(gw)
                fresh = 0
                for step in ordering:
                    if step == "client":
                        result = services.verify_payment(
                            user=self.user, gateway_order_id=gw, payment_id=f"pay_{n}",
                            signature=payment_sig(gw, f"pay_{n}"),
                        )
                        fresh += not result["already_verified"]
                    else:
                        self.deliver(webhook_body(gw, payment_id=f"pay_{n}"))

                order = Order.objects.get(gateway_order_id=gw)
                self.assertEqual(order.status, Order.Status.PAID)
                self.assertEqual(order.gateway_payment_id, f"pay_{n}")
                self.assertEqual(order.amount, Decimal("49.99"))
                self.assertEqual(order.course_id, self.course.pk)
                # Only a checkout callback that wins the transition reports a fresh verification.
                self.assertLessEqual(fresh, 1)
                self.assertEqual(fresh, 1 if ordering[0] == "client" else 0)


@override_settings(EMAIL_BACKEND='django.core.mail.backends.locmem.EmailBackend')
class RazorpayWebhookViewTests(WebhookTestBase):
    def _post(self, body: bytes, signature=None):
        headers = {}
        if signature is not None:
            headers["HTTP_X_RAZORPAY_SIGNATURE"] = signature
        return self.client.post(
            reverse("payments:razorpay_webhook"), data=body, content_type="application/json", **headers,
        )

    def test_applied(self):
        self.make_order()
        body = webhook_body("gw_1")
        resp = self._post(body, webhook_sig(body))
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"success": True, "processed": True, "reason": "applied"})
        self.assertEqual(Order.objects.get().status, Order.Status.PAID)

    def test_classified_outcomes_are_acknowledged(self):
        for body in (webhook_body("gw_unknown"), b"{}", b"nonsense"):
            with self.subTest(body=body):
                resp = self._post(body, webhook_sig(body))
                self.assertEqual(resp.status_code, 200)
                self.assertFalse(resp.json()["processed"])

    def test_missing_signature_header(self):
        resp = self._post(webhook_body("gw_1"))
        self.assertEqual(resp.status_code, 400)
        self.assertFalse(resp.json()["success"])

    def test_invalid_signature(self):
        self.make_order()
        resp = self._post(webhook_body("gw_1"), "not-the-signature")
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(Order.objects.get().status, Order.Status.PENDING)

    def test_missing_webhook_secret(self):
        body = webhook_body("gw_1")
        with override_settings(RAZORPAY={"KEY_ID": "rzp_test_key", "KEY_SECRET": "test-key-secret"}):
            with self.assertLogs("payments", level="ERROR"):
                resp = self._post(body, webhook_sig(body))
        self.assertEqual(resp.status_code, 500)
        self.assertFalse(resp.json()["success"])

    def test_get_not_allowed(self):
        resp = self.client.get(reverse("payments:razorpay_webhook"))
        self.assertEqual(resp.status_code, 405)
