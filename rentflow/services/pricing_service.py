"""
Rental pricing.

Two entry points share the add-on and discount rules:

- ``compute_totals``: the single-machine formula (``rental_days * daily_rate``)
  used by every booking created before line items existed.
- ``compute_totals_from_items``: the itemized cart. One item priced
  PER_BOOKING/DAY at ``daily_rate`` must give exactly the same breakdown as
  ``compute_totals``; historical and itemized bookings are compared on that basis.

All amounts are ``Decimal`` in major currency units (euros). Convert with
``to_cents`` only when talking to Stripe or storing a snapshot.
"""
import enum
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional, Sequence

from rentflow.core.exceptions import PricingValidationError

ZERO = Decimal("0")
HUNDRED = Decimal("100")


class ChargeModel(str, enum.Enum):
    PER_BOOKING = "PER_BOOKING"  # quantity ignored
    PER_UNIT = "PER_UNIT"


class TimeUnit(str, enum.Enum):
    DAY = "DAY"
    HOUR = "HOUR"
    NONE = "NONE"  # flat, once per booking


Money = Decimal | int | float | str


def _money(value: Optional[Money]) -> Optional[Decimal]:
    if value is None:
        return None
    # str() keeps floats like 0.1 from turning into 0.1000000000000000055...
    return value if isinstance(value, Decimal) else Decimal(str(value))


def to_cents(amount: Decimal) -> int:
    return int((amount * HUNDRED).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_cents(cents: Optional[int]) -> Optional[Decimal]:
    if cents is None:
        return None
    return Decimal(cents) / HUNDRED


@dataclass(frozen=True)
class PricingItem:
    unit_price: Money
    quantity: int = 1
    charge_model: ChargeModel | str = ChargeModel.PER_BOOKING
    time_unit: TimeUnit | str = TimeUnit.DAY


@dataclass(frozen=True)
class AddOnSelection:
    """Flat add-ons. A charge of None on a selected add-on means the price is not known yet."""
    delivery_selected: bool = False
    pickup_selected: bool = False
    insurance_selected: bool = False
    operator_selected: bool = False
    delivery_charge: Optional[Money] = None
    pickup_charge: Optional[Money] = None
    insurance_charge: Optional[Money] = None
    operator_charge: Optional[Money] = None  # per rental day


@dataclass(frozen=True)
class PricingContext:
    rental_days: int
    add_ons: AddOnSelection = field(default_factory=AddOnSelection)
    discount_percentage: Optional[Money] = None


@dataclass(frozen=True)
class LegacyPriceInputs:
    rental_days: int
    daily_rate: Money
    add_ons: AddOnSelection = field(default_factory=AddOnSelection)
    discount_percentage: Optional[Money] = None


@dataclass(frozen=True)
class PriceBreakdown:
    rental_days: int
    subtotal: Decimal
    delivery: Decimal
    pickup: Decimal
    insurance: Decimal
    operator: Decimal
    discount: Decimal
    total: Decimal
    # add-ons that were selected without a concrete price
    pending: frozenset = frozenset()

    @property
    def insurance_pending(self) -> bool:
        return "insurance" in self.pending

    @property
    def operator_pending(self) -> bool:
        return "operator" in self.pending

    @property
    def pre_discount_total(self) -> Decimal:
        return self.total + self.discount

    def to_cents_dict(self) -> dict:
        return {
            "rentalDays": self.rental_days,
            "subtotalCents": to_cents(self.subtotal),
            "deliveryCents": to_cents(self.delivery),
            "pickupCents": to_cents(self.pickup),
            "insuranceCents": to_cents(self.insurance),
            "operatorCents": to_cents(self.operator),
            "discountCents": to_cents(self.discount),
            "totalCents": to_cents(self.total),
            "pending": sorted(self.pending),
        }


def _check_rental_days(rental_days: int) -> None:
    if rental_days is None or int(rental_days) != rental_days or rental_days < 0:
        raise PricingValidationError("rental_days must be a non-negative integer", {"rental_days": rental_days})


def _non_negative(name: str, value: Optional[Decimal]) -> None:
    if value is not None and value < 0:
        raise PricingValidationError(f"{name} must not be negative", {name: str(value)})


def effective_discount_percentage(value: Optional[Money]) -> Decimal:
    pct = _money(value)
    if pct is None or pct < 0 or pct > HUNDRED:
        return ZERO
    return pct


def _apply_add_ons(rental_days: int, subtotal: Decimal, add_ons: AddOnSelection, discount_percentage: Optional[Money]) -> PriceBreakdown:
    charges = {
        "delivery": _money(add_ons.delivery_charge),
        "pickup": _money(add_ons.pickup_charge),
        "insurance": _money(add_ons.insurance_charge),
        "operator": _money(add_ons.operator_charge),
    }
    for name, value in charges.items():
        _non_negative(f"{name}_charge", value)

    selected = {
        "delivery": add_ons.delivery_selected,
        "pickup": add_ons.pickup_selected,
        "insurance": add_ons.insurance_selected,
        "operator": add_ons.operator_selected,
    }
    amounts: dict[str, Decimal] = {}
    pending = set()
    for name, is_selected in selected.items():
        charge = charges[name]
        if not is_selected:
            amounts[name] = ZERO
        elif charge is None:
            amounts[name] = ZERO
            pending.add(name)
        else:
            amounts[name] = charge
    amounts["operator"] = amounts["operator"] * rental_days

    before_discount = subtotal + sum(amounts.values(), ZERO)
    discount = before_discount * effective_discount_percentage(discount_percentage) / HUNDRED

    return PriceBreakdown(
        rental_days=rental_days,
        subtotal=subtotal,
        delivery=amounts["delivery"],
        pickup=amounts["pickup"],
        insurance=amounts["insurance"],
        operator=amounts["operator"],
        discount=discount,
        total=before_discount - discount,
        pending=frozenset(pending),
    )


def compute_totals(inputs: LegacyPriceInputs) -> PriceBreakdown:
    _check_rental_days(inputs.rental_days)
    daily_rate = _money(inputs.daily_rate)
    _non_negative("daily_rate", daily_rate)
    subtotal = daily_rate * inputs.rental_days
    return _apply_add_ons(inputs.rental_days, subtotal, inputs.add_ons, inputs.discount_percentage)


def _parse_charge_model(value) -> ChargeModel:
    try:
        return ChargeModel(value)
    except ValueError:
        raise PricingValidationError(f"Unknown chargeModel: {getattr(value, 'value', value)}")


def _parse_time_unit(value) -> TimeUnit:
    try:
        return TimeUnit(value)
    except ValueError:
        raise PricingValidationError(f"Unknown timeUnit: {getattr(value, 'value', value)}")


def line_total(item: PricingItem, rental_days: int) -> Decimal:
    charge_model = _parse_charge_model(item.charge_model)
    time_unit = _parse_time_unit(item.time_unit)
    unit_price = _money(item.unit_price)
    _non_negative("unit_price", unit_price)
    if item.quantity is None or item.quantity < 1:
        raise PricingValidationError("quantity must be at least 1", {"quantity": item.quantity})

    base = unit_price if charge_model is ChargeModel.PER_BOOKING else unit_price * item.quantity

    if time_unit is TimeUnit.DAY:
        return base * rental_days
    if time_unit is TimeUnit.NONE:
        return base
    # TimeUnit.HOUR: rental windows are whole days; there is no hour count to multiply by.
    raise NotImplementedError("HOUR-based pricing not yet implemented")


def compute_totals_from_items(context: PricingContext, items: Sequence[PricingItem] | Iterable[PricingItem]) -> PriceBreakdown:
    _check_rental_days(context.rental_days)
    subtotal = sum((line_total(item, context.rental_days) for item in items), ZERO)
    return _apply_add_ons(context.rental_days, subtotal, context.add_ons, context.discount_percentage)
