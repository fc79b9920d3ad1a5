from datetime import timedelta
from decimal import Decimal
from io import StringIO
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.core import mail
from django.core.management import call_command
from django.test import TestCase
from django.utils import timezone

from courses.models import Course

from .errors import GatewayError
from .models import Order


class FakeGateway:
    def __init__(self, payments_by_order):
        self.payments_by_order = payments_by_order
        self.seen = []

    def fetch_order_payments(self, gateway_order_id):
        self.seen.append(gateway_order_id)
        result = self.payments_by_order.get(gateway_order_id, [])
        if isinstance(result, Exception):
            raise result
        return result


class ReconcileRazorpayOrdersTests(TestCase):
    def setUp(self):
        self.user = get_user_model().objects.create_user("asha", email="asha@example.com", password="pw")
        self.course = Course.objects.create(title="Intro", description="d", category="web", price=Decimal("10.00"))

    def make_order(self, gateway_order_id, age_minutes=60, **extra):
        order = Order.objects.create(
            user=self.user, course=self.course, amount=self.course.price, currency="INR",
            receipt=f"r_{gateway_order_id}", gateway_order_id=gateway_order_id, **extra,
        )
        Order.objects.filter(pk=order.pk).update(created_at=timezone.now() - timedelta(minutes=age_minutes))
        return order

    def run_command(self, gateway, *args):
        out = StringIO()
        with patch("payments.management.commands.reconcile_razorpay_orders.get_gateway", return_value=gateway):
            call_command("reconcile_razorpay_orders", "--sleep", "0", *args, stdout=out)
        return out.getvalue()

    def test_marks_captured_orders_paid(self):
        self.make_order("gw_1")
        gateway = FakeGateway({"gw_1": [
            {"id": "pay_a", "status": "failed"},
            {"id": "pay_b", "status": "captured"},
        ]})
        out = self.run_command(gateway)

        order = Order.objects.get()
        self.assertEqual(order.status, Order.Status.PAID)
        self.assertEqual(order.gateway_payment_id, "pay_b")
        self.assertIn("Checked 1, updated 1 orders.", out)
        self.assertEqual(len(mail.outbox), 0)

    def test_leaves_unpaid_and_recent_orders_alone(self):
        self.make_order("gw_old")
        self.make_order("gw_new", age_minutes=1)
        gateway = FakeGateway({"gw_old": [{"id": "pay_a", "status": "failed"}]})
        out = self.run_command(gateway)

        self.assertEqual(gateway.seen, ["gw_old"])
        self.assertEqual(set(Order.objects.values_list("status", flat=True)), {Order.Status.PENDING})
        self.assertIn("gw_old: still pending", out)

    def test_gateway_errors_are_reported_and_skipped(self):
        self.make_order("gw_1", age_minutes=90)
        self.make_order("gw_2")
        gateway = FakeGateway({
            "gw_1": GatewayError("payment_lookup_failed", "The id provided does not exist"),
            "gw_2": [{"id": "pay_2", "status": "captured"}],
        })
        out = self.run_command(gateway)

        self.assertIn("gw_1: The id provided does not exist", out)
        self.assertEqual(Order.objects.get(gateway_order_id="gw_2").status, Order.Status.PAID)
        self.assertEqual(Order.objects.get(gateway_order_id="gw_1").status, Order.Status.PENDING)

    def test_nothing_to_do(self):
        self.make_order("gw_paid", status=Order.Status.PAID)
        out = self.run_command(FakeGateway({}))
        self.assertIn("No pending orders to reconcile.", out)
