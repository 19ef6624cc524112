import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from ..exceptions import InvalidInput, NotFound

CENT = Decimal("0.01")

# Largest magnitudes the DecimalField columns hold (max_digits / decimal_places)
MAX_MONEY = Decimal("9999999999999999.99")        # 18, 2
MAX_UNIT_PRICE = Decimal("99999999999999.9999")   # 18, 4
MAX_QUANTITY = Decimal("9999999999.9999")         # 14, 4


# ------------------------------------
# Input coercion for service callers
# ------------------------------------
def to_decimal(value, field):
    """Parse ints, strings and floats (via str) into Decimal."""
    if isinstance(value, bool) or value is None or value == "":
        raise InvalidInput(f"{field} is required and must be a number")
    if isinstance(value, float):
        value = str(value)
    try:
        number = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidInput(f"{field} must be a number, got {value!r}")
    if not number.is_finite():
        raise InvalidInput(f"{field} must be a finite number")
    return number


def check_magnitude(number, field, limit=MAX_MONEY):
    if abs(number) > limit:
        raise InvalidInput(f"{field} is too large (limit {limit})")
    return number


def to_money(value, field):
    """Monetary amount in the smallest currency unit (cents), never rounded."""
    amount = check_magnitude(to_decimal(value, field), field)
    if amount != amount.quantize(CENT):
        raise InvalidInput(f"{field} has more precision than one cent: {amount}")
    return amount.quantize(CENT)


def to_scaled(value, field, places=4, limit=None):
    """Quantities and unit prices: at most `places` decimal places."""
    number = to_decimal(value, field)
    if limit is not None:
        check_magnitude(number, field, limit)
    step = Decimal(1).scaleb(-places)
    if number != number.quantize(step):
        raise InvalidInput(f"{field} allows at most {places} decimal places: {number}")
    return number


def round_money(value):
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_date(value, field, required=True):
    if value in (None, ""):
        if required:
            raise InvalidInput(f"{field} is required")
        return None
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    try:
        return datetime.date.fromisoformat(str(value))
    except ValueError:
        raise InvalidInput(f"{field} must be an ISO date (YYYY-MM-DD), got {value!r}")


def to_text(value, field, required=False, max_length=None):
    text = "" if value is None else str(value).strip()
    if required and not text:
        raise InvalidInput(f"{field} is required")
    if max_length and len(text) > max_length:
        raise InvalidInput(f"{field} is longer than {max_length} characters")
    return text or None


def to_id(value, field):
    if isinstance(value, bool) or value in (None, ""):
        raise InvalidInput(f"{field} is required")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidInput(f"{field} must be an id, got {value!r}")


def get_for_company(model, company, pk, label=None):
    """Fetch a tenant-owned row, NotFound when missing or owned by another company."""
    label = label or model.__name__
    try:
        return model.objects.for_company(company).get(pk=pk)
    except (model.DoesNotExist, ValueError, TypeError):
        raise NotFound(f"{label} {pk} not found")


# ------------------------------------
# Posting Account Validation
# ------------------------------------
def require_account_type(account, allowed, purpose):
    if account.ac_type not in allowed:
        raise InvalidInput(
            f"{purpose} must use a {' or '.join(sorted(allowed))} account; "
            f"{account.code} is {account.ac_type}"
        )
    if not account.is_active:
        raise InvalidInput(f"Account {account.code} is inactive")
    return account
