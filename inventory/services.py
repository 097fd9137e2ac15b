import logging
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from django.db import transaction
from django.db.models import F
from django.utils import timezone
from rest_framework.exceptions import NotFound, ValidationError

from inventory.models import InventoryItem, StockMove

logger = logging.getLogger("inventory.stock")

QUANTITY_QUANT = Decimal("0.01")


def _to_quantity(value, field="quantity"):
    try:
        quantity = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError({field: "A valid number is required."})
    return quantity.quantize(QUANTITY_QUANT, rounding=ROUND_HALF_UP)


def find_item_by_name(item_name):
    item = InventoryItem.objects.filter(item_name__iexact=(item_name or "").strip()).first()
    if item is None:
        raise NotFound(f"Inventory item '{item_name}' was not found.")
    return item


def _source_ref(request):
    if request is None:
        return {}
    return {"source_ref_type": "procurement.purchase_request", "source_ref_id": request.id}


def deduct_stock(*, item_name, quantity, reason="", actor=None, request=None, move_reason=StockMove.Reason.FULFILMENT):
    """Atomically take ``quantity`` out of the central stock of ``item_name``.

    The decrement is a single conditional UPDATE, so concurrent deductions can
    never drive stock negative. Returns the new stock level.
    """
    quantity = _to_quantity(quantity)
    if quantity <= 0:
        raise ValidationError({"quantity": "Quantity must be greater than zero."})

    with transaction.atomic():
        item = find_item_by_name(item_name)
        updated = InventoryItem.objects.filter(pk=item.pk, central_stock__gte=quantity).update(
            central_stock=F("central_stock") - quantity,
            updated_at=timezone.now(),
        )
        item.refresh_from_db(fields=["central_stock"])
        if not updated:
            raise ValidationError(
                {"quantity": f"Insufficient stock for {item.item_name}: available {item.central_stock}, requested {quantity}."}
            )

        StockMove.objects.create(
            item=item,
            quantity=-quantity,
            balance_after=item.central_stock,
            reason=move_reason,
            note=reason[:255],
            actor=actor,
            **_source_ref(request),
        )

    logger.info(
        "stock_deducted",
        extra={"entity": "inventory_item", "entity_id": str(item.id), "quantity": str(quantity)},
    )
    return item.central_stock


def add_stock(*, item, quantity, reason="", actor=None, move_reason=StockMove.Reason.RECEIPT):
    quantity = _to_quantity(quantity)
    if quantity <= 0:
        raise ValidationError({"quantity": "Quantity must be greater than zero."})

    with transaction.atomic():
        InventoryItem.objects.filter(pk=item.pk).update(
            central_stock=F("central_stock") + quantity,
            updated_at=timezone.now(),
        )
        item.refresh_from_db(fields=["central_stock"])
        StockMove.objects.create(
            item=item,
            quantity=quantity,
            balance_after=item.central_stock,
            reason=move_reason,
            note=reason[:255],
            actor=actor,
        )

    logger.info(
        "stock_added",
        extra={"entity": "inventory_item", "entity_id": str(item.id), "quantity": str(quantity)},
    )
    return item.central_stock


def adjust_stock(*, item, delta, reason, actor):
    """Manual correction by a purchase officer; ``delta`` is signed."""
    delta = _to_quantity(delta, field="delta")
    if delta == 0:
        raise ValidationError({"delta": "Adjustment must be non-zero."})
    if not (reason or "").strip():
        raise ValidationError({"reason": "A reason is required for stock adjustments."})
    if delta > 0:
        return add_stock(item=item, quantity=delta, reason=reason, actor=actor, move_reason=StockMove.Reason.ADJUSTMENT)
    return deduct_stock(
        item_name=item.item_name,
        quantity=-delta,
        reason=reason,
        actor=actor,
        move_reason=StockMove.Reason.ADJUSTMENT,
    )


def vendor_in_use(vendor):
    return vendor.quotes.exists() or vendor.purchase_orders.exists() or vendor.inventory_items.exists()


def remove_vendor(vendor):
    """Hard-delete an unused vendor; vendors referenced by quotes, POs or items are deactivated instead."""
    if vendor_in_use(vendor):
        vendor.is_active = False
        vendor.save(update_fields=["is_active", "updated_at"])
        return "deactivated"
    vendor.delete()
    return "deleted"
