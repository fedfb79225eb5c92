import logging

from django.core.exceptions import ValidationError
from django.db import transaction
from django.utils import timezone

from receptions.models import DailyPrice
from receptions.services.discounts import calculate_final_amounts
from receptions.weights import _dec, q_money

logger = logging.getLogger(__name__)


def get_active_price(fruit_type_id, on_date=None):
    """Active price for the fruit type on ``on_date`` (today by default), or None."""
    if fruit_type_id is None:
        return None
    return (
        DailyPrice.objects.filter(
            fruit_type_id=fruit_type_id,
            price_date=on_date or timezone.localdate(),
            active=True,
        )
        .order_by("-created_at", "-id")
        .first()
    )


def _clean_price(price_per_kg):
    price = _dec(price_per_kg)
    if price is None or not price.is_finite() or price <= 0:
        raise ValidationError("Price per kg must be > 0.")
    return q_money(price)


@transaction.atomic
def set_daily_price(fruit_type, price_date, price_per_kg, actor=None):
    """Publish the day's price. A day keeps its active price until it is deactivated."""
    price = _clean_price(price_per_kg)
    price_date = price_date or timezone.localdate()
    if DailyPrice.objects.filter(fruit_type=fruit_type, price_date=price_date, active=True).exists():
        raise ValidationError(
            f"An active price already exists for {fruit_type} on {price_date}."
        )
    daily = DailyPrice.objects.create(
        fruit_type=fruit_type,
        price_date=price_date,
        price_per_kg=price,
        created_by=actor,
    )
    logger.info("Daily price %s/kg set for %s on %s", price, fruit_type, price_date)
    return daily


@transaction.atomic
def set_price_active(price_id, active):
    daily = DailyPrice.objects.select_for_update().get(pk=price_id)
    if daily.active == active:
        return daily
    if active and DailyPrice.objects.filter(
        fruit_type_id=daily.fruit_type_id, price_date=daily.price_date, active=True
    ).exclude(pk=daily.pk).exists():
        raise ValidationError(
            f"Another price is already active for {daily.fruit_type} on {daily.price_date}."
        )
    daily.active = active
    daily.save(update_fields=["active"])
    return daily


def reception_amounts(reception, price=None):
    """Money value of a reception's reconciled weights, or None without a price."""
    if price is None:
        price = get_active_price(reception.fruit_type_id, reception.reception_date)
    if price is None:
        return None
    return calculate_final_amounts(
        reception.original_weight, reception.final_weight, price.price_per_kg
    )
