import hashlib
import hmac
from decimal import Decimal
from unittest.mock import patch

import requests
from django.apps import apps
from django.contrib.auth import get_user_model
from django.core import mail
from django.test import SimpleTestCase, TestCase, override_settings
from requests.auth import HTTPBasicAuth

from courses.models import Course

from . import services
from .errors import (
    ConfigurationError,
    Conflict,
    Forbidden,
    GatewayError,
    InvalidRequest,
    InvalidState,
    NotFound,
    VerificationFailed,
)
from .gateway import RazorpayClient, get_gateway
from .models import Order
from .signatures import verify_payment_signature, verify_webhook_signature
from .utils import from_minor_units, generate_receipt, to_minor_units

KEY_SECRET = "test-key-secret"


def sign(order_id, payment_id, secret=KEY_SECRET):
    return hmac.new(secret.encode(), f"{order_id}|{payment_id}".encode(), hashlib.sha256).hexdigest()


class FakeResponse:
    def __init__(self, status_code=200, data=None, text=""):
        self.status_code = status_code
        self._data = data
        self.text = text

    def json(self):
        if self._data is None:
            raise ValueError("no json")
        return self._data


class FakeGateway:
    key_id = "rzp_test_key"

    def __init__(self, intent_id="gw_1", error=None):
        self.intent_id = intent_id
        self.error = error
        self.calls = []

    def create_intent(self, amount_minor_units, currency, receipt, metadata=None):
        self.calls.append((amount_minor_units, currency, receipt, metadata))
        if self.error:
            raise self.error
        return {
            "id": self.intent_id,
            "amount": amount_minor_units,
            "currency": currency,
            "receipt": receipt,
            "status": "created",
        }


class MinorUnitsTests(SimpleTestCase):
    def test_half_cent_rounds_up(self):
        self.assertEqual(to_minor_units(Decimal("99.995")), 10000)

    def test_regular_price(self):
        self.assertEqual(to_minor_units(Decimal("49.99")), 4999)

    def test_back_to_major_units(self):
        self.assertEqual(from_minor_units(1001), Decimal("10.01"))
        self.assertEqual(from_minor_units(4999), Decimal("49.99"))

    def test_accepts_strings_and_ints(self):
        self.assertEqual(to_minor_units("0.005"), 1)
        self.assertEqual(to_minor_units(12), 1200)


class ReceiptTests(SimpleTestCase):
    def test_receipts_are_unique_and_fit_gateway_limit(self):
        receipts = {generate_receipt() for _ in range(50)}
        self.assertEqual(len(receipts), 50)
        for r in receipts:
            self.assertTrue(r.startswith("order_"))
            self.assertLessEqual(len(r), 40)


class PaymentSignatureTests(SimpleTestCase):
    def test_valid_signature(self):
        self.assertTrue(verify_payment_signature("gw_1", "pay_1", sign("gw_1", "pay_1")))

    def test_tampered_signature(self):
        sig = sign("gw_1", "pay_1")
        self.assertFalse(verify_payment_signature("gw_1", "pay_2", sig))
        flipped = sig[:-1] + ("1" if sig.endswith("0") else "0")
        self.assertFalse(verify_payment_signature("gw_1", "pay_1", flipped))

    def test_blank_or_non_ascii_signature_is_a_mismatch(self):
        self.assertFalse(verify_payment_signature("gw_1", "pay_1", ""))
        self.assertFalse(verify_payment_signature("gw_1", "pay_1", None))
        self.assertFalse(verify_payment_signature("gw_1", "pay_1", "sïgnature"))

    def test_missing_secret_raises(self):
        with override_settings(RAZORPAY={"KEY_ID": "rzp_test_key"}):
            with self.assertLogs("payments.signatures", level="ERROR"):
                with self.assertRaises(ConfigurationError):
                    verify_payment_signature("gw_1", "pay_1", "sig")


class WebhookSignatureTests(SimpleTestCase):
    body = b'{"event":"payment.captured",  "payload":{}}'

    def _sig(self, body):
        return hmac.new(b"test-webhook-secret", body, hashlib.sha256).hexdigest()

    def test_raw_body_verifies(self):
        self.assertTrue(verify_webhook_signature(self.body, self._sig(self.body)))

    def test_reserialized_body_does_not_verify(self):
        reserialized = b'{"event": "payment.captured", "payload": {}}'
        self.assertFalse(verify_webhook_signature(reserialized, self._sig(self.body)))

    def test_payment_secret_is_not_the_webhook_secret(self):
        wrong = hmac.new(KEY_SECRET.encode(), self.body, hashlib.sha256).hexdigest()
        self.assertFalse(verify_webhook_signature(self.body, wrong))


class RazorpayClientTests(SimpleTestCase):
    def setUp(self):
        self.client_ = RazorpayClient("rzp_test_key", "sekrit", base_url="https://api.example.com/", timeout=7)

    def test_create_intent(self):
        data = {"id": "order_9A", "amount": 4999, "currency": "INR", "receipt": "r1", "status": "created"}
        with patch("payments.gateway.requests.request", return_value=FakeResponse(200, data)) as req:
            intent = self.client_.create_intent(4999, "INR", "r1", {"course_id": 3})

        self.assertEqual(intent, data)
        args, kwargs = req.call_args
        self.assertEqual(args, ("POST", "https://api.example.com/v1/orders"))
        self.assertEqual(kwargs["json"], {"amount": 4999, "currency": "INR", "receipt": "r1", "notes": {"course_id": "3"}})
        self.assertEqual(kwargs["auth"], HTTPBasicAuth("rzp_test_key", "sekrit"))
        self.assertEqual(kwargs["timeout"], 7)

    def test_provider_error_is_wrapped(self):
        body = {"error": {"code": "BAD_REQUEST_ERROR", "description": "Amount exceeds maximum", "reason": "input_validation_failed"}}
        with patch("payments.gateway.requests.request", return_value=FakeResponse(400, body)):
            with self.assertLogs("payments.gateway", level="ERROR"):
                with self.assertRaises(GatewayError) as cm:
                    self.client_.create_intent(4999, "INR", "r1")

        err = cm.exception
        self.assertEqual(err.reason, "input_validation_failed")
        self.assertEqual(err.provider_message, "Amount exceeds maximum")
        self.assertNotIn("sekrit", str(err.as_dict()))

    def test_non_json_error_uses_default_reason(self):
        with patch("payments.gateway.requests.request", return_value=FakeResponse(500, None, "boom")):
            with self.assertLogs("payments.gateway", level="ERROR"):
                with self.assertRaises(GatewayError) as cm:
                    self.client_.create_intent(100, "INR", "r1")
        self.assertEqual(cm.exception.reason, "order_creation_failed")
        self.assertIn("500", cm.exception.provider_message)

    def test_transport_failure(self):
        with patch("payments.gateway.requests.request", side_effect=requests.ConnectionError("down")):
            with self.assertRaises(GatewayError) as cm:
                self.client_.create_intent(100, "INR", "r1")
        self.assertEqual(cm.exception.reason, "network_error")

    def test_fetch_order_payments(self):
        data = {"count": 1, "items": [{"id": "pay_1", "status": "captured"}]}
        with patch("payments.gateway.requests.request", return_value=FakeResponse(200, data)) as req:
            items = self.client_.fetch_order_payments("order_9A")
        self.assertEqual(items, [{"id": "pay_1", "status": "captured"}])
        self.assertEqual(req.call_args.args, ("GET", "https://api.example.com/v1/orders/order_9A/payments"))

    def test_missing_credentials(self):
        with self.assertRaises(ConfigurationError):
            RazorpayClient("", "")
        with override_settings(RAZORPAY={"KEY_ID": "rzp_test_key", "KEY_SECRET": ""}):
            with self.assertRaises(ConfigurationError):
                RazorpayClient.from_settings()

    def test_get_gateway_fails_fast_when_not_configured(self):
        with patch.object(apps.get_app_config("payments"), "gateway", None):
            with self.assertRaises(ConfigurationError):
                get_gateway()

    def test_startup_builds_gateway_from_settings(self):
        gateway = get_gateway()
        self.assertEqual(gateway.key_id, "rzp_test_key")
        self.assertEqual(gateway.base_url, "https://api.razorpay.test")


class OrderTestMixin:
    def setUp(self):
        User = get_user_model()
        self.user = User.objects.create_user("asha", email="asha@example.com", password="pw", first_name="Asha")
        self.other = User.objects.create_user("ravi", email="ravi@example.com", password="pw")
        self.course = Course.objects.create(
            title="Intro to Django", description="Basics", category="web", price=Decimal("49.99"),
        )

    def make_order(self, gateway_order_id="gw_1", user=None, status=Order.Status.PENDING, **extra):
        return Order.objects.create(
            user=user or self.user,
            course=self.course,
            amount=self.course.price,
            currency="INR",
            receipt=f"r_{gateway_order_id}",
            gateway_order_id=gateway_order_id,
            status=status,
            **extra,
        )


class CreateOrderTests(OrderTestMixin, TestCase):
    def test_creates_pending_order(self):
        gateway = FakeGateway("gw_1")
        result = services.create_order(user=self.user, course_id=self.course.pk, gateway=gateway)

        order = Order.objects.get()
        self.assertEqual(result["order"], order)
        self.assertEqual(order.status, Order.Status.PENDING)
        self.assertEqual(order.gateway_order_id, "gw_1")
        self.assertEqual(order.amount, Decimal("49.99"))
        self.assertEqual(order.currency, "INR")
        self.assertIsNone(order.gateway_payment_id)
        self.assertEqual(result["key_id"], "rzp_test_key")
        self.assertEqual(result["intent"]["amount"], 4999)

        amount, currency, receipt, metadata = gateway.calls[0]
        self.assertEqual((amount, currency), (4999, "INR"))
        self.assertEqual(order.receipt, receipt)
        self.assertEqual(metadata, {"course_id": self.course.pk, "user_id": self.user.pk})

    def test_each_attempt_gets_its_own_receipt(self):
        services.create_order(user=self.user, course_id=self.course.pk, gateway=FakeGateway("gw_1"))
        services.create_order(user=self.user, course_id=self.course.pk, gateway=FakeGateway("gw_2"))
        receipts = set(Order.objects.values_list("receipt", flat=True))
        self.assertEqual(len(receipts), 2)

    def test_unknown_course(self):
        with self.assertRaises(NotFound):
            services.create_order(user=self.user, course_id=999999, gateway=FakeGateway())

    def test_malformed_course_id(self):
        with self.assertRaises(InvalidRequest):
            services.create_order(user=self.user, course_id="abc", gateway=FakeGateway())

    def test_free_course_rejected(self):
        self.course.price = Decimal("0")
        self.course.save()
        gateway = FakeGateway()
        with self.assertRaises(InvalidState):
            services.create_order(user=self.user, course_id=self.course.pk, gateway=gateway)
        self.assertEqual(gateway.calls, [])

    def test_half_paisa_prices_round_up_end_to_end(self):
        for price, minor, stored in (
            ("10.005", 1001, "10.01"),
            ("0.125", 13, "0.13"),
            ("99.995", 10000, "100.00"),
        ):
            with self.subTest(price=price):
                Order.objects.all().delete()
                self.course.price = Decimal(price)
                self.course.save()
                gateway = FakeGateway(f"gw_{minor}")
                result = services.create_order(user=self.user, course_id=self.course.pk, gateway=gateway)

                self.assertEqual(gateway.calls[0][0], minor)
                self.assertEqual(result["intent"]["amount"], minor)
                order = Order.objects.get()
                self.assertEqual(order.amount, Decimal(stored))

    def test_price_below_one_paisa_rejected(self):
        self.course.price = Decimal("0.0040")
        self.course.save()
        gateway = FakeGateway()
        with self.assertRaises(InvalidState):
            services.create_order(user=self.user, course_id=self.course.pk, gateway=gateway)
        self.assertEqual(gateway.calls, [])

    def test_double_purchase_rejected(self):
        self.make_order("gw_paid", status=Order.Status.PAID, gateway_payment_id="pay_0")
        gateway = FakeGateway("gw_2")
        with self.assertRaises(Conflict):
            services.create_order(user=self.user, course_id=self.course.pk, gateway=gateway)
        self.assertEqual(Order.objects.count(), 1)
        self.assertEqual(gateway.calls, [])

    def test_other_user_can_still_buy(self):
        self.make_order("gw_paid", status=Order.Status.PAID, gateway_payment_id="pay_0")
        services.create_order(user=self.other, course_id=self.course.pk, gateway=FakeGateway("gw_2"))
        self.assertEqual(Order.objects.filter(user=self.other).count(), 1)

    def test_gateway_failure_persists_nothing(self):
        gateway = FakeGateway(error=GatewayError("input_validation_failed", "Amount too small"))
        with self.assertRaises(GatewayError):
            services.create_order(user=self.user, course_id=self.course.pk, gateway=gateway)
        self.assertFalse(Order.objects.exists())

    def test_uses_startup_gateway_by_default(self):
        gateway = FakeGateway("gw_default")
        with patch.object(apps.get_app_config("payments"), "gateway", gateway):
            services.create_order(user=self.user, course_id=self.course.pk)
        self.assertTrue(Order.objects.filter(gateway_order_id="gw_default").exists())


class VerifyPaymentTests(OrderTestMixin, TestCase):
    def verify(self, payment_id="pay_1", signature=None, user=None, gateway_order_id="gw_1"):
        return services.verify_payment(
            user=user or self.user,
            gateway_order_id=gateway_order_id,
            payment_id=payment_id,
            signature=signature if signature is not None else sign(gateway_order_id, payment_id),
        )

    def test_valid_signature_marks_paid_and_emails(self):
        self.make_order()
        result = self.verify()

        order = Order.objects.get()
        self.assertEqual(order.status, Order.Status.PAID)
        self.assertEqual(order.gateway_payment_id, "pay_1")
        self.assertEqual(order.gateway_signature, sign("gw_1", "pay_1"))
        self.assertIsNotNone(order.verified_at)
        self.assertFalse(result["already_verified"])
        self.assertEqual(result["email"], {"dispatched": True, "error": None})
        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(mail.outbox[0].to, ["asha@example.com"])
        self.assertIn("Intro to Django", mail.outbox[0].subject)
        self.assertIn("INR 49.99", mail.outbox[0].body)
        self.assertIn("pay_1", mail.outbox[0].body)

    def test_replay_is_a_no_op(self):
        self.make_order()
        self.verify()
        first = Order.objects.get()

        result = self.verify()
        self.assertTrue(result["already_verified"])
        self.assertEqual(result["email"], {"dispatched": False, "error": None})
        self.assertEqual(len(mail.outbox), 1)
        again = Order.objects.get()
        self.assertEqual(again.verified_at, first.verified_at)
        self.assertEqual(again.updated_at, first.updated_at)

    def test_replay_does_not_recheck_signature(self):
        self.make_order(status=Order.Status.PAID, gateway_payment_id="pay_1")
        with patch("payments.services.verify_payment_signature") as check:
            result = self.verify(signature="anything")
        check.assert_not_called()
        self.assertTrue(result["already_verified"])
        self.assertEqual(Order.objects.get().gateway_payment_id, "pay_1")

    def test_tampered_signature_fails_for_good(self):
        self.make_order()
        for _ in range(3):
            with self.assertRaises(VerificationFailed):
                self.verify(signature="deadbeef")
            self.assertEqual(Order.objects.get().status, Order.Status.FAILED)

        # A correct signature can no longer resurrect the order.
        with self.assertRaises(InvalidState):
            self.verify()
        order = Order.objects.get()
        self.assertEqual(order.status, Order.Status.FAILED)
        self.assertIsNone(order.gateway_payment_id)
        self.assertEqual(len(mail.outbox), 0)

    def test_unknown_order(self):
        with self.assertRaises(NotFound):
            self.verify(gateway_order_id="gw_missing")

    def test_other_users_order(self):
        self.make_order()
        with self.assertRaises(Forbidden):
            self.verify(user=self.other)
        self.assertEqual(Order.objects.get().status, Order.Status.PENDING)

    def test_missing_fields(self):
        with self.assertRaises(InvalidRequest):
            services.verify_payment(user=self.user, gateway_order_id="gw_1", payment_id="", signature="x")

    def test_non_string_fields(self):
        self.make_order()
        for fields in (
            {"gateway_order_id": "gw_1", "payment_id": "pay_1", "signature": 123},
            {"gateway_order_id": "gw_1", "payment_id": ["pay_1"], "signature": "x"},
            {"gateway_order_id": {"id": "gw_1"}, "payment_id": "pay_1", "signature": "x"},
            {"gateway_order_id": "gw_1", "payment_id": "   ", "signature": "x"},
        ):
            with self.subTest(fields=fields):
                with self.assertRaises(InvalidRequest):
                    services.verify_payment(user=self.user, **fields)
        self.assertEqual(Order.objects.get().status, Order.Status.PENDING)

    def test_email_failure_does_not_undo_payment(self):
        self.make_order()
        with patch("payments.emails.EmailMultiAlternatives.send", side_effect=OSError("smtp down")):
            with self.assertLogs("payments.emails", level="ERROR"):
                result = self.verify()
        self.assertEqual(Order.objects.get().status, Order.Status.PAID)
        self.assertFalse(result["email"]["dispatched"])
        self.assertEqual(result["email"]["error"], "smtp down")

    @override_settings(PAYMENTS_EMAIL_ENABLED=False)
    def test_email_disabled(self):
        self.make_order()
        result = self.verify()
        self.assertEqual(result["email"], {"dispatched": False, "error": None})
        self.assertEqual(len(mail.outbox), 0)

    def test_user_without_email(self):
        self.user.email = ""
        self.user.save()
        self.make_order()
        result = self.verify()
        self.assertFalse(result["email"]["dispatched"])
        self.assertIn("email", result["email"]["error"])

    def test_losing_the_race_to_the_webhook(self):
        order = self.make_order()

        def webhook_lands_first(*args):
            Order.objects.filter(pk=order.pk).update(status=Order.Status.PAID, gateway_payment_id="pay_1")
            return True

        with patch("payments.services.verify_payment_signature", side_effect=webhook_lands_first):
            result = self.verify()

        self.assertTrue(result["already_verified"])
        self.assertEqual(result["order"].status, Order.Status.PAID)
        self.assertEqual(len(mail.outbox), 0)

    def test_losing_the_race_to_a_failed_webhook(self):
        order = self.make_order()

        def webhook_lands_first(*args):
            Order.objects.filter(pk=order.pk).update(status=Order.Status.FAILED)
            return True

        with patch("payments.services.verify_payment_signature", side_effect=webhook_lands_first):
            with self.assertRaises(InvalidState):
                self.verify()
        self.assertEqual(Order.objects.get().status, Order.Status.FAILED)


class ConditionalTransitionTests(OrderTestMixin, TestCase):
    def test_stale_writer_changes_nothing(self):
        order = self.make_order()
        stale = Order.objects.get(pk=order.pk)

        self.assertTrue(services._transition(order, Order.Status.PAID, gateway_payment_id="pay_1"))
        self.assertFalse(services._transition(stale, Order.Status.PAID, gateway_payment_id="pay_2"))

        self.assertEqual(stale.status, Order.Status.PAID)
        self.assertEqual(stale.gateway_payment_id, "pay_1")

    def test_terminal_states_never_move(self):
        paid = self.make_order("gw_p", status=Order.Status.PAID)
        failed = self.make_order("gw_f", status=Order.Status.FAILED)
        self.assertFalse(services._transition(paid, Order.Status.FAILED))
        self.assertFalse(services._transition(failed, Order.Status.PAID))
        self.assertEqual(Order.objects.get(pk=paid.pk).status, Order.Status.PAID)
        self.assertEqual(Order.objects.get(pk=failed.pk).status, Order.Status.FAILED)


class ListUserOrdersTests(OrderTestMixin, TestCase):
    def test_only_paid_orders_of_user(self):
        from datetime import timedelta
        from django.utils import timezone

        now = timezone.now()
        older = self.make_order("gw_a", status=Order.Status.PAID, verified_at=now - timedelta(days=1))
        newer = self.make_order("gw_b", status=Order.Status.PAID, verified_at=now)
        self.make_order("gw_c")
        self.make_order("gw_d", user=self.other, status=Order.Status.PAID, verified_at=now)

        self.assertEqual(services.list_user_orders(self.user), [newer, older])
