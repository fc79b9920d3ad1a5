import secrets
import string
import time
from decimal import ROUND_HALF_UP, Decimal

_BASE36 = string.digits + string.ascii_lowercase

MINOR_UNITS_PER_MAJOR = 100


def _base36(n: int) -> str:
    out = ""
    while True:
        n, r = divmod(n, 36)
        out = _BASE36[r] + out
        if n == 0:
            return out


def generate_receipt(prefix="order"):
    # e.g. order_lz3k9q1c_9f2a61bd; Razorpay caps receipts at 40 chars
    ts = _base36(int(time.time() * 1000))
    return f"{prefix}_{ts}_{secrets.token_hex(4)}"


def to_minor_units(amount) -> int:
    """Convert a major-unit amount to integer minor units, rounding half up.

    ``Decimal("99.995")`` becomes ``10000``, never ``9999``.
    """
    q = Decimal(str(amount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return int(q * MINOR_UNITS_PER_MAJOR)


def from_minor_units(minor: int) -> Decimal:
    return (Decimal(minor) / MINOR_UNITS_PER_MAJOR).quantize(Decimal("0.01"))
