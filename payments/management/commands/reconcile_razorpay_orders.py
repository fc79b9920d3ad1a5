import time
from datetime import timedelta

from django.core.management.base import BaseCommand
from django.utils import timezone

from payments.errors import GatewayError
from payments.gateway import get_gateway
from payments.models import Order
from payments.services import apply_gateway_payment, map_payment_status


def _settling_payment(payments):
    # A paid attempt wins over earlier failed attempts on the same order.
    for p in payments:
        if map_payment_status(p.get("status")) == Order.Status.PAID:
            return p
    return None


class Command(BaseCommand):
    help = "Poll Razorpay for pending orders and mark the ones that were paid"

    def add_arguments(self, parser):
        parser.add_argument("--max", type=int, default=50)
        parser.add_argument("--sleep", type=float, default=0.5)
        parser.add_argument("--older-than-minutes", type=int, default=15)

    def handle(self, *args, **opts):
        cutoff = timezone.now() - timedelta(minutes=opts["older_than_minutes"])
        qs = Order.objects.filter(status=Order.Status.PENDING, created_at__lt=cutoff).order_by("created_at")[:opts["max"]]
        orders = list(qs)

        if not orders:
            self.stdout.write(self.style.SUCCESS("No pending orders to reconcile."))
            return

        gateway = get_gateway()
        updated = 0
        for i, order in enumerate(orders):
            if i and opts["sleep"]:
                time.sleep(opts["sleep"])
            try:
                payments = gateway.fetch_order_payments(order.gateway_order_id)
            except GatewayError as e:
                self.stdout.write(self.style.WARNING(f"{order.gateway_order_id}: {e.message}"))
                continue

            payment = _settling_payment(payments)
            if payment is None:
                self.stdout.write(f"{order.gateway_order_id}: still pending")
                continue

            if apply_gateway_payment(order, payment):
                updated += 1
                self.stdout.write(self.style.SUCCESS(f"Updated {order.gateway_order_id} -> {order.status}"))
            else:
                self.stdout.write(f"{order.gateway_order_id}: already {order.status}")

        self.stdout.write(self.style.SUCCESS(f"Checked {len(orders)}, updated {updated} orders."))
