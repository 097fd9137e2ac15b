import logging
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from django.conf import settings
from django.db import transaction
from django.db.models import IntegerField, Max
from django.db.models.functions import Cast
from django.utils import timezone
from rest_framework.exceptions import NotFound, PermissionDenied, ValidationError

from common.exceptions import InvalidTransition
from common.permissions import get_user_role, user_has_role
from core.models import User
from inventory.models import InventoryItem
from inventory.services import deduct_stock
from notifications.models import Notification
from notifications.services import notify, notify_role
from procurement.documents import build_po_document, compute_line
from procurement.models import (
    CostComparison,
    DocumentSequence,
    PurchaseOrder,
    PurchaseOrderLine,
    PurchaseRequest,
    RequestNote,
    VendorQuote,
)
from procurement.workflow import transition

logger = logging.getLogger(__name__)

MONEY_QUANT = Decimal("0.01")
RATE_QUANT = Decimal("0.0001")
HUNDRED = Decimal("100")

RS = PurchaseRequest.Status
CS = CostComparison.Status
PS = PurchaseOrder.Status

DETAIL_EDITABLE_STATUSES = (RS.APPROVED, RS.READY_FOR_CC, RS.CC_PENDING)
OPEN_PO_STATUSES = (PS.PENDING_APPROVAL, PS.ORDERED)


def _to_money(value):
    return Decimal(value).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def _to_rate(value):
    return Decimal(value).quantize(RATE_QUANT, rounding=ROUND_HALF_UP)


def _decimal(value, field):
    try:
        return Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError({field: "A valid number is required."})


def _positive(value, field, label):
    value = _decimal(value, field)
    if value <= 0:
        raise ValidationError({field: f"{label} must be greater than zero."})
    return value


def _percent(value, field):
    if value in (None, ""):
        return None
    value = _decimal(value, field)
    if value < 0 or value > HUNDRED:
        raise ValidationError({field: "Percentage must be between 0 and 100."})
    return value


def _require_role(actor, *roles, message):
    if not user_has_role(actor, *roles):
        raise PermissionDenied(message)


def _lock(instance):
    return type(instance).objects.select_for_update().get(pk=instance.pk)


def log_request_event(*, actor, purchase_request, content):
    return RequestNote.objects.create(
        request_number=purchase_request.request_number,
        author=actor,
        role=get_user_role(actor) or "",
        status=purchase_request.status,
        type=RequestNote.Type.LOG,
        content=content,
    )


def add_request_note(*, actor, request_number, content):
    content = (content or "").strip()
    if not content:
        raise ValidationError({"content": "Note cannot be empty."})
    latest = PurchaseRequest.objects.filter(request_number=request_number).order_by("item_order").first()
    if latest is None:
        raise NotFound(f"Request #{request_number} was not found.")
    return RequestNote.objects.create(
        request_number=request_number,
        author=actor,
        role=get_user_role(actor) or "",
        status=latest.status,
        type=RequestNote.Type.NOTE,
        content=content,
    )


# Purchase requests


def _next_in_sequence(key, seed):
    """Hand out the next serial for ``key``.

    The sequence row stays locked until the surrounding transaction commits,
    so concurrent callers queue instead of reading the same maximum.
    ``seed`` is called once, when the key is first used.
    """
    sequence, _ = DocumentSequence.objects.select_for_update().get_or_create(key=key, defaults={"last_value": seed})
    sequence.last_value += 1
    sequence.save(update_fields=["last_value", "updated_at"])
    return sequence.last_value


def _highest_request_number():
    return (
        PurchaseRequest.objects.filter(request_number__regex=r"^[0-9]+$")
        .aggregate(highest=Max(Cast("request_number", IntegerField())))["highest"]
        or 0
    )


def _next_request_number():
    return str(_next_in_sequence("purchase_request", _highest_request_number)).zfill(settings.REQUEST_NUMBER_WIDTH)


def create_request_group(*, actor, site, items, submit=False):
    """Create sibling requests sharing one request number, one per item."""
    _require_role(actor, User.Role.SITE_ENGINEER, message="Only site engineers can raise requests.")
    if not site.is_active:
        raise ValidationError({"site": "This site is inactive."})
    if not actor.assigned_sites.filter(pk=site.pk).exists():
        raise PermissionDenied("You are not assigned to this site.")
    if not items:
        raise ValidationError({"items": "At least one item is required."})

    cleaned = []
    for index, item in enumerate(items, start=1):
        item_name = (item.get("item_name") or "").strip()
        if not item_name:
            raise ValidationError({"items": f"Item {index}: name is required."})
        unit = (item.get("unit") or "").strip()
        if not unit:
            raise ValidationError({"items": f"Item {index}: unit is required."})
        cleaned.append(
            {
                **item,
                "item_name": item_name,
                "unit": unit,
                "quantity": _positive(item.get("quantity"), "quantity", f"Item {index} quantity"),
            }
        )

    status = RS.PENDING if submit else RS.DRAFT
    with transaction.atomic():
        request_number = _next_request_number()
        created = [
            PurchaseRequest.objects.create(
                request_number=request_number,
                item_order=index,
                site=site,
                created_by=actor,
                status=status,
                **item,
            )
            for index, item in enumerate(cleaned, start=1)
        ]
        if submit:
            notify_role(
                role=User.Role.MANAGER,
                title="New request awaiting approval",
                message=f"Request #{request_number} from {actor.display_name} ({len(created)} item(s)) at {site.name}.",
                link=f"/requests/{request_number}",
                entity=created[0],
            )

    logger.info("request_group_created", extra={"entity": "purchase_request", "entity_id": request_number, "to_status": status})
    return created


def update_draft_item(*, actor, purchase_request, changes):
    if purchase_request.created_by_id != actor.id:
        raise PermissionDenied("Only the requester can edit this request.")
    if purchase_request.status != RS.DRAFT:
        raise InvalidTransition("Only draft requests can be edited.")
    if "quantity" in changes:
        changes["quantity"] = _positive(changes["quantity"], "quantity", "Quantity")
    for field, value in changes.items():
        setattr(purchase_request, field, value)
    purchase_request.save(update_fields=[*changes.keys(), "updated_at"])
    return purchase_request


def submit_request_group(*, actor, request_number):
    with transaction.atomic():
        drafts = list(
            PurchaseRequest.objects.select_for_update()
            .filter(request_number=request_number, created_by=actor, status=RS.DRAFT)
            .order_by("item_order")
        )
        if not drafts:
            raise ValidationError(f"Request #{request_number} has no draft items to submit.")
        for purchase_request in drafts:
            transition(purchase_request, RS.PENDING, actor=actor)
        notify_role(
            role=User.Role.MANAGER,
            title="New request awaiting approval",
            message=f"Request #{request_number} from {actor.display_name} ({len(drafts)} item(s)).",
            link=f"/requests/{request_number}",
            entity=drafts[0],
        )
    return drafts


def review_request(*, actor, purchase_request, approve, reason=""):
    _require_role(actor, User.Role.MANAGER, message="Only managers can approve or reject requests.")
    reason = (reason or "").strip()
    with transaction.atomic():
        purchase_request = _lock(purchase_request)
        if approve:
            purchase_request.approved_by = actor
            purchase_request.approved_at = timezone.now()
            transition(purchase_request, RS.APPROVED, actor=actor, update_fields=["approved_by", "approved_at"])
            log_request_event(actor=actor, purchase_request=purchase_request, content=f"Item '{purchase_request.item_name}' approved.")
        else:
            if not reason:
                raise ValidationError({"reason": "A reason is required when rejecting a request."})
            purchase_request.rejection_reason = reason
            transition(purchase_request, RS.REJECTED, actor=actor, update_fields=["rejection_reason"])
            log_request_event(actor=actor, purchase_request=purchase_request, content=f"Item '{purchase_request.item_name}' rejected: {reason}")

        notify(
            user=purchase_request.created_by,
            title=f"Request #{purchase_request.request_number} {'approved' if approve else 'rejected'}",
            message=purchase_request.item_name if approve else f"{purchase_request.item_name}: {reason}",
            type=Notification.Type.SUCCESS if approve else Notification.Type.ERROR,
            link=f"/requests/{purchase_request.request_number}",
            entity=purchase_request,
        )
    return purchase_request


def cancel_request(*, actor, purchase_request, reason=""):
    is_manager = user_has_role(actor, User.Role.MANAGER)
    if not is_manager:
        if purchase_request.created_by_id != actor.id:
            raise PermissionDenied("Only the requester or a manager can cancel this request.")
        if purchase_request.status not in (RS.DRAFT, RS.PENDING):
            raise InvalidTransition("Requests can only be withdrawn while draft or pending approval.")
    with transaction.atomic():
        purchase_request = _lock(purchase_request)
        transition(purchase_request, RS.CANCELLED, actor=actor)
        log_request_event(
            actor=actor,
            purchase_request=purchase_request,
            content=f"Item '{purchase_request.item_name}' cancelled." + (f" Reason: {reason.strip()}" if (reason or "").strip() else ""),
        )
    return purchase_request


def update_request_details(*, actor, purchase_request, changes):
    """Officer-side data correction (quantity, unit, description, item name); never changes status."""
    _require_role(actor, User.Role.PURCHASE_OFFICER, message="Only purchase officers can correct request details.")
    if purchase_request.status not in DETAIL_EDITABLE_STATUSES:
        raise ValidationError(f"Request details cannot be changed while the request is '{purchase_request.status}'.")
    if "quantity" in changes:
        changes["quantity"] = _positive(changes["quantity"], "quantity", "Quantity")
    for field in ("item_name", "unit"):
        if field in changes:
            changes[field] = (changes[field] or "").strip()
            if not changes[field]:
                raise ValidationError({field: "This field may not be blank."})
    if not changes:
        return purchase_request

    for field, value in changes.items():
        setattr(purchase_request, field, value)
    purchase_request.save(update_fields=[*changes.keys(), "updated_at"])
    log_request_event(
        actor=actor,
        purchase_request=purchase_request,
        content="Details updated: " + ", ".join(f"{field}={value}" for field, value in changes.items()),
    )
    return purchase_request


def direct_to_po(*, actor, purchase_request):
    """Skip the cost comparison and send an approved item straight to PO issue."""
    _require_role(actor, User.Role.PURCHASE_OFFICER, message="Only purchase officers can route requests.")
    if purchase_request.status not in (RS.APPROVED, RS.READY_FOR_CC):
        raise InvalidTransition("Only approved requests awaiting a cost comparison can go directly to PO.")
    with transaction.atomic():
        purchase_request = _lock(purchase_request)
        transition(purchase_request, RS.READY_FOR_PO, actor=actor)
        log_request_event(actor=actor, purchase_request=purchase_request, content="Sent directly to purchase order.")
    return purchase_request


def confirm_delivery(*, actor, purchase_request):
    if purchase_request.created_by_id != actor.id:
        raise PermissionDenied("Only the engineer who raised the request can confirm delivery.")
    with transaction.atomic():
        purchase_request = _lock(purchase_request)
        purchase_request.delivered_at = timezone.now()
        transition(purchase_request, RS.DELIVERED, actor=actor, update_fields=["delivered_at"])
        log_request_event(actor=actor, purchase_request=purchase_request, content="Delivery confirmed on site.")
    return purchase_request


# Cost comparisons


def final_unit_price(unit_price, discount_percent=None, gst_percent=None):
    discount = Decimal(discount_percent or 0)
    gst = Decimal(gst_percent or 0)
    return Decimal(unit_price) * (1 - discount / HUNDRED) * (1 + gst / HUNDRED)


def rank_quotes(quotes, quantity):
    """Price every quote for ``quantity`` units and flag the cheapest.

    Ties go to the quote added first (lowest ``position``).
    """
    quantity = Decimal(quantity)
    rows = []
    for quote in sorted(quotes, key=lambda q: q.position):
        unit = final_unit_price(quote.unit_price, quote.discount_percent, quote.gst_percent)
        rows.append({"quote": quote, "final_unit_price": unit, "total": unit * quantity, "is_best": False})
    if rows:
        min(rows, key=lambda row: row["total"])["is_best"] = True
    for row in rows:
        row["final_unit_price"] = _to_money(row["final_unit_price"])
        row["total"] = _to_money(row["total"])
    return rows


def get_comparison(purchase_request):
    try:
        return purchase_request.cost_comparison
    except CostComparison.DoesNotExist:
        raise NotFound("No cost comparison exists for this request.")


def open_comparison(*, actor, purchase_request):
    """Return the request's cost comparison, starting one (and moving the request to ready_for_cc) if needed."""
    _require_role(actor, User.Role.PURCHASE_OFFICER, message="Only purchase officers can prepare cost comparisons.")
    existing = CostComparison.objects.filter(request=purchase_request).first()
    if existing is not None:
        return existing
    if purchase_request.status not in (RS.APPROVED, RS.READY_FOR_CC):
        raise InvalidTransition("A cost comparison can only be started for approved requests.")

    with transaction.atomic():
        purchase_request = _lock(purchase_request)
        if purchase_request.status == RS.APPROVED:
            transition(purchase_request, RS.READY_FOR_CC, actor=actor)
        comparison = CostComparison.objects.create(request=purchase_request, created_by=actor)
    return comparison


def _ensure_editable(comparison):
    if comparison.status not in CostComparison.EDITABLE_STATUSES:
        raise InvalidTransition("The cost comparison can only be edited while draft or after rejection.")
    if comparison.is_direct_delivery:
        raise ValidationError("This request is fulfilled entirely from inventory.")


def _quote_values(*, vendor, quoted_price, per_unit_basis=None, discount_percent=None, gst_percent=None, quantity=None, unit=""):
    if not vendor.is_active:
        raise ValidationError({"vendor": f"Vendor {vendor.company_name} is inactive."})
    quoted_price = _decimal(quoted_price, "unit_price")
    if quoted_price < 0:
        raise ValidationError({"unit_price": "Price cannot be negative."})
    basis = _positive(per_unit_basis if per_unit_basis not in (None, "") else 1, "per_unit_basis", "Per-unit basis")
    return {
        "quoted_price": quoted_price,
        "per_unit_basis": basis,
        "unit_price": _to_rate(quoted_price / basis),
        "discount_percent": _percent(discount_percent, "discount_percent"),
        "gst_percent": _percent(gst_percent, "gst_percent"),
        "quantity": _positive(quantity, "quantity", "Quoted quantity") if quantity not in (None, "") else None,
        "unit": (unit or "").strip(),
    }


def add_or_update_quote(*, actor, purchase_request, vendor, unit_price, **quote_fields):
    """Upsert the vendor's quote; ``unit_price`` is the price as quoted, per ``per_unit_basis`` units."""
    values = _quote_values(vendor=vendor, quoted_price=unit_price, **quote_fields)
    with transaction.atomic():
        comparison = _lock(open_comparison(actor=actor, purchase_request=purchase_request))
        _ensure_editable(comparison)
        quote = comparison.quotes.filter(vendor=vendor).first()
        if quote is None:
            position = (comparison.quotes.aggregate(top=Max("position"))["top"] or 0) + 1
            quote = VendorQuote.objects.create(comparison=comparison, vendor=vendor, position=position, **values)
        else:
            for field, value in values.items():
                setattr(quote, field, value)
            quote.save()
        comparison.save(update_fields=["updated_at"])
    return quote


def remove_quote(*, actor, purchase_request, vendor):
    _require_role(actor, User.Role.PURCHASE_OFFICER, message="Only purchase officers can edit cost comparisons.")
    with transaction.atomic():
        comparison = _lock(get_comparison(purchase_request))
        _ensure_editable(comparison)
        deleted, _ = comparison.quotes.filter(vendor=vendor).delete()
        if not deleted:
            raise NotFound("This vendor has no quote on the comparison.")
        comparison.save(update_fields=["updated_at"])
    return comparison


def plan_fulfilment(*, actor, purchase_request, inventory_quantity, purchase_quantity=0):
    """Record how much of the request comes out of central stock and how much is bought.

    Full fulfilment deducts stock and sends the request straight to delivery.
    Partial fulfilment deducts the stock portion and leaves the rest for
    vendor quotes; ``purchase_quantity`` must cover the shortfall and may
    exceed it to restock.
    """
    inventory_quantity = _decimal(inventory_quantity, "inventory_quantity")
    purchase_quantity = _decimal(purchase_quantity or 0, "purchase_quantity")
    if inventory_quantity < 0 or purchase_quantity < 0:
        raise ValidationError("Quantities cannot be negative.")
    if inventory_quantity == 0:
        raise ValidationError({"inventory_quantity": "Inventory quantity must be greater than zero."})
    if inventory_quantity > purchase_request.quantity:
        raise ValidationError({"inventory_quantity": "Inventory quantity cannot exceed the requested quantity."})

    shortfall = purchase_request.quantity - inventory_quantity
    if purchase_quantity < shortfall:
        raise ValidationError({"purchase_quantity": f"Purchase quantity must cover the shortfall of {shortfall}."})

    with transaction.atomic():
        comparison = _lock(open_comparison(actor=actor, purchase_request=purchase_request))
        _ensure_editable(comparison)
        if comparison.inventory_fulfillment_quantity is not None:
            raise ValidationError("Inventory fulfilment has already been recorded for this request.")

        purchase_request = _lock(purchase_request)
        deduct_stock(
            item_name=purchase_request.item_name,
            quantity=inventory_quantity,
            reason=f"Request #{purchase_request.request_number}/{purchase_request.item_order}",
            actor=actor,
            request=purchase_request,
        )

        comparison.inventory_fulfillment_quantity = inventory_quantity
        if purchase_quantity == 0:
            comparison.is_direct_delivery = True
            comparison.purchase_quantity = None
            comparison.save(update_fields=["inventory_fulfillment_quantity", "is_direct_delivery", "purchase_quantity", "updated_at"])
            transition(purchase_request, RS.READY_FOR_DELIVERY, actor=actor)
            content = f"{inventory_quantity} {purchase_request.unit} issued from central inventory."
        else:
            comparison.purchase_quantity = purchase_quantity
            comparison.save(update_fields=["inventory_fulfillment_quantity", "purchase_quantity", "updated_at"])
            content = (
                f"{inventory_quantity} {purchase_request.unit} issued from central inventory; "
                f"{purchase_quantity} {purchase_request.unit} to be purchased."
            )
        log_request_event(actor=actor, purchase_request=purchase_request, content=content)
    return comparison


def submit_comparison(*, actor, purchase_request):
    _require_role(actor, User.Role.PURCHASE_OFFICER, message="Only purchase officers can submit cost comparisons.")
    with transaction.atomic():
        comparison = _lock(get_comparison(purchase_request))
        if comparison.status != CS.DRAFT:
            raise InvalidTransition("Only a draft cost comparison can be submitted; use resubmit after a rejection.")
        minimum = settings.PROCUREMENT_MIN_COMPARISON_QUOTES
        if not comparison.is_direct_delivery and comparison.quotes.count() < minimum:
            raise ValidationError(f"Add at least {minimum} vendor quote(s) before submitting.")

        comparison.submitted_at = timezone.now()
        transition(comparison, CS.CC_PENDING, actor=actor, update_fields=["submitted_at"])
        purchase_request = _lock(purchase_request)
        transition(purchase_request, RS.CC_PENDING, actor=actor)
        notify_role(
            role=User.Role.MANAGER,
            title="Cost comparison awaiting review",
            message=f"Request #{purchase_request.request_number}: {purchase_request.item_name}",
            link=f"/requests/{purchase_request.request_number}",
            entity=comparison,
        )
    return comparison


def review_comparison(*, actor, purchase_request, approve, selected_vendor=None, notes=""):
    _require_role(actor, User.Role.MANAGER, message="Only managers can review cost comparisons.")
    notes = (notes or "").strip()
    with transaction.atomic():
        comparison = _lock(get_comparison(purchase_request))
        purchase_request = _lock(purchase_request)

        if approve:
            if comparison.status != CS.CC_PENDING:
                raise InvalidTransition(f"Cannot approve a cost comparison that is '{comparison.status}'.")
            if selected_vendor is None or not comparison.quotes.filter(vendor=selected_vendor).exists():
                raise ValidationError({"selected_vendor": "Select one of the vendors quoted on this comparison."})
            comparison.selected_vendor = selected_vendor
            comparison.approved_by = actor
            comparison.approved_at = timezone.now()
            comparison.manager_notes = notes
            transition(comparison, CS.CC_APPROVED, actor=actor, update_fields=["selected_vendor", "approved_by", "approved_at", "manager_notes"])
            transition(purchase_request, RS.READY_FOR_PO, actor=actor)
            content = f"Cost comparison approved; vendor {selected_vendor.company_name} selected." + (f" Notes: {notes}" if notes else "")
        else:
            if comparison.status != CS.CC_PENDING:
                raise InvalidTransition(f"Cannot reject a cost comparison that is '{comparison.status}'.")
            if not notes:
                raise ValidationError({"notes": "Notes are required when rejecting a cost comparison."})
            comparison.manager_notes = notes
            comparison.rejected_at = timezone.now()
            transition(comparison, CS.CC_REJECTED, actor=actor, update_fields=["manager_notes", "rejected_at"])
            transition(purchase_request, RS.READY_FOR_CC, actor=actor)
            content = f"Cost comparison rejected: {notes}"

        log_request_event(actor=actor, purchase_request=purchase_request, content=content)
        notify(
            user=comparison.created_by,
            title=f"Cost comparison {'approved' if approve else 'rejected'}",
            message=f"Request #{purchase_request.request_number}: {purchase_request.item_name}",
            type=Notification.Type.SUCCESS if approve else Notification.Type.WARNING,
            link=f"/requests/{purchase_request.request_number}",
            entity=comparison,
        )
    return comparison


def resubmit_comparison(*, actor, purchase_request, quotes, is_direct_delivery=False):
    """Replace the quote set of a rejected comparison and send it back for review."""
    _require_role(actor, User.Role.PURCHASE_OFFICER, message="Only purchase officers can resubmit cost comparisons.")
    cleaned = []
    seen_vendors = set()
    for quote in quotes:
        vendor = quote["vendor"]
        if vendor.pk in seen_vendors:
            raise ValidationError({"quotes": f"Vendor {vendor.company_name} is quoted more than once."})
        seen_vendors.add(vendor.pk)
        fields = {key: value for key, value in quote.items() if key not in ("vendor", "unit_price")}
        cleaned.append((vendor, _quote_values(vendor=vendor, quoted_price=quote["unit_price"], **fields)))

    minimum = settings.PROCUREMENT_MIN_COMPARISON_QUOTES
    if not is_direct_delivery and len(cleaned) < minimum:
        raise ValidationError(f"Add at least {minimum} vendor quote(s) before resubmitting.")

    with transaction.atomic():
        comparison = _lock(get_comparison(purchase_request))
        if comparison.status != CS.CC_REJECTED:
            raise InvalidTransition("Only a rejected cost comparison can be resubmitted.")

        comparison.quotes.all().delete()
        for position, (vendor, values) in enumerate(cleaned, start=1):
            VendorQuote.objects.create(comparison=comparison, vendor=vendor, position=position, **values)

        comparison.is_direct_delivery = is_direct_delivery
        comparison.selected_vendor = None
        comparison.submitted_at = timezone.now()
        transition(comparison, CS.CC_PENDING, actor=actor, update_fields=["is_direct_delivery", "selected_vendor", "submitted_at"])
        purchase_request = _lock(purchase_request)
        transition(purchase_request, RS.CC_PENDING, actor=actor)
        log_request_event(actor=actor, purchase_request=purchase_request, content="Cost comparison resubmitted for review.")
        notify_role(
            role=User.Role.MANAGER,
            title="Cost comparison resubmitted",
            message=f"Request #{purchase_request.request_number}: {purchase_request.item_name}",
            link=f"/requests/{purchase_request.request_number}",
            entity=comparison,
        )
    return comparison


# Purchase orders


def _next_po_number():
    prefix = timezone.now().strftime(f"{settings.PO_NUMBER_PREFIX}-%Y%m-")

    def highest_serial():
        highest = PurchaseOrder.objects.filter(po_number__startswith=prefix).aggregate(highest=Max("po_number"))["highest"]
        tail = highest[len(prefix):] if highest else ""
        return int(tail) if tail.isdigit() else 0

    serial = _next_in_sequence(f"purchase_order:{prefix}", highest_serial)
    return f"{prefix}{serial:04d}"


def _create_lines(purchase_order, lines):
    total = Decimal("0")
    for position, line in enumerate(lines, start=1):
        figures = compute_line(
            quantity=line["quantity"],
            unit_rate=line["unit_rate"],
            per_unit_basis=line.get("per_unit_basis") or 1,
            discount_percent=line.get("discount_percent") or 0,
            gst_tax_rate=line.get("gst_tax_rate") or 0,
        )
        line_total = _to_money(figures["item_total"])
        PurchaseOrderLine.objects.create(purchase_order=purchase_order, position=position, line_total=line_total, **line)
        total += line_total
    purchase_order.total_amount = _to_money(total)
    purchase_order.save(update_fields=["total_amount", "updated_at"])
    return purchase_order


def _clean_direct_line(index, item):
    # A line may carry a request item sent straight to PO; its name and unit fill any blanks.
    purchase_request = item.get("request")
    description = (item.get("item_description") or (purchase_request.item_name if purchase_request else "")).strip()
    if not description:
        raise ValidationError({"items": f"Item {index}: description is required."})
    unit = (item.get("unit") or (purchase_request.unit if purchase_request else "")).strip()
    if not unit:
        raise ValidationError({"items": f"Item {index}: unit is required."})
    hsn_sac_code = (item.get("hsn_sac_code") or "").strip()
    if not hsn_sac_code and purchase_request:
        hsn_sac_code = _hsn_for(purchase_request.item_name)
    gst = _percent(item.get("gst_tax_rate", 0), "gst_tax_rate")
    discount = _percent(item.get("discount_percent", 0), "discount_percent")
    return {
        "request": purchase_request,
        "item_description": description,
        "hsn_sac_code": hsn_sac_code,
        "quantity": _positive(item.get("quantity"), "quantity", f"Item {index} quantity"),
        "unit": unit,
        "unit_rate": _positive(item.get("unit_rate"), "unit_rate", f"Item {index} unit rate"),
        "per_unit_basis": _positive(item.get("per_unit_basis") or 1, "per_unit_basis", f"Item {index} per-unit basis"),
        "per_unit_basis_unit": (item.get("per_unit_basis_unit") or "").strip(),
        "discount_percent": discount or Decimal("0"),
        "gst_tax_rate": gst or Decimal("0"),
    }


def _hsn_for(item_name):
    item = InventoryItem.objects.filter(item_name__iexact=item_name.strip()).only("hsn_sac_code").first()
    return item.hsn_sac_code if item else ""


def _request_label(purchase_request):
    return f"Request #{purchase_request.request_number}/{purchase_request.item_order}"


def _ensure_not_on_open_po(request_ids):
    line = (
        PurchaseOrderLine.objects.filter(request_id__in=request_ids, purchase_order__status__in=OPEN_PO_STATUSES)
        .select_related("request", "purchase_order")
        .first()
    )
    if line is not None:
        raise ValidationError(f"{_request_label(line.request)} is already on purchase order {line.purchase_order.po_number}.")


def _lock_direct_po_requests(lines, site):
    """Lock the request items linked from direct PO lines and check they can be ordered at ``site``."""
    request_ids = [line["request"].pk for line in lines if line.get("request") is not None]
    if len(request_ids) != len(set(request_ids)):
        raise ValidationError({"items": "A request item can appear only once on a purchase order."})
    if not request_ids:
        return []
    locked = list(PurchaseRequest.objects.select_for_update().filter(pk__in=request_ids).order_by("request_number", "item_order"))
    for purchase_request in locked:
        if purchase_request.status != RS.READY_FOR_PO:
            raise InvalidTransition(f"{_request_label(purchase_request)} is not ready for a PO.")
        if purchase_request.site_id != site.id:
            raise ValidationError({"items": f"{_request_label(purchase_request)} belongs to a different site."})
    _ensure_not_on_open_po(request_ids)
    return locked


def issue_purchase_order(*, actor, requests, valid_till=None, expected_delivery_date=None, hsn_codes=None, notes=""):
    """Issue a standard PO for request items whose comparisons chose the same vendor.

    Approval already happened on the cost comparison, so the PO starts as
    ordered and its items move to the delivery stage.
    """
    _require_role(actor, User.Role.PURCHASE_OFFICER, message="Only purchase officers can issue purchase orders.")
    if not requests:
        raise ValidationError({"requests": "Select at least one request item."})
    hsn_codes = {str(key): value for key, value in (hsn_codes or {}).items()}

    with transaction.atomic():
        locked = list(
            PurchaseRequest.objects.select_for_update()
            .filter(pk__in=[purchase_request.pk for purchase_request in requests])
            .order_by("request_number", "item_order")
        )
        if len(locked) != len({purchase_request.pk for purchase_request in requests}):
            raise NotFound("One or more request items were not found.")
        _ensure_not_on_open_po([purchase_request.pk for purchase_request in locked])

        vendor = site = None
        lines = []
        for purchase_request in locked:
            if purchase_request.status != RS.READY_FOR_PO:
                raise InvalidTransition(f"Request #{purchase_request.request_number}/{purchase_request.item_order} is not ready for a PO.")
            comparison = CostComparison.objects.filter(request=purchase_request, status=CS.CC_APPROVED).select_related("selected_vendor").first()
            if comparison is None or comparison.selected_vendor is None:
                raise ValidationError(f"Request #{purchase_request.request_number}/{purchase_request.item_order} has no approved cost comparison.")
            if vendor is None:
                vendor, site = comparison.selected_vendor, purchase_request.site
            elif comparison.selected_vendor_id != vendor.id:
                raise ValidationError("All items on a purchase order must have the same selected vendor.")
            elif purchase_request.site_id != site.id:
                raise ValidationError("All items on a purchase order must be delivered to the same site.")

            quote = comparison.quotes.get(vendor=vendor)
            lines.append(
                {
                    "request": purchase_request,
                    "item_description": purchase_request.item_name,
                    "hsn_sac_code": (hsn_codes.get(str(purchase_request.id)) or _hsn_for(purchase_request.item_name)).strip(),
                    "quantity": comparison.comparison_quantity,
                    "unit": purchase_request.unit,
                    "unit_rate": quote.unit_price,
                    "per_unit_basis": Decimal("1"),
                    "discount_percent": quote.discount_percent or Decimal("0"),
                    "gst_tax_rate": quote.gst_percent or Decimal("0"),
                }
            )
            approved_by = comparison.approved_by

        if not vendor.is_active:
            raise ValidationError({"vendor": f"Vendor {vendor.company_name} is inactive."})

        purchase_order = PurchaseOrder.objects.create(
            po_number=_next_po_number(),
            is_direct=False,
            vendor=vendor,
            site=site,
            status=PS.ORDERED,
            valid_till=valid_till,
            expected_delivery_date=expected_delivery_date,
            notes=notes or "",
            created_by=actor,
            approved_by=approved_by,
            approved_at=timezone.now(),
        )
        _create_lines(purchase_order, lines)

        for purchase_request in locked:
            transition(purchase_request, RS.DELIVERY_STAGE, actor=actor)
            log_request_event(actor=actor, purchase_request=purchase_request, content=f"Purchase order {purchase_order.po_number} issued to {vendor.company_name}.")

    logger.info("purchase_order_issued", extra={"entity": "purchase_order", "entity_id": str(purchase_order.id), "to_status": purchase_order.status})
    return purchase_order


def create_direct_po(*, actor, vendor, site, items, valid_till=None, expected_delivery_date=None, notes=""):
    """Raise a PO outside the cost comparison flow; it needs manager approval before ordering.

    Lines may link request items sent straight to PO. Those items stay
    ready_for_po until a manager approves the PO.
    """
    _require_role(actor, User.Role.PURCHASE_OFFICER, message="Only purchase officers can create direct purchase orders.")
    if not vendor.is_active:
        raise ValidationError({"vendor": f"Vendor {vendor.company_name} is inactive."})
    if not site.is_active:
        raise ValidationError({"site": f"Site {site.name} is inactive."})
    if not items:
        raise ValidationError({"items": "At least one item is required."})
    lines = [_clean_direct_line(index, item) for index, item in enumerate(items, start=1)]

    with transaction.atomic():
        linked = _lock_direct_po_requests(lines, site)
        purchase_order = PurchaseOrder.objects.create(
            po_number=_next_po_number(),
            is_direct=True,
            vendor=vendor,
            site=site,
            status=PS.PENDING_APPROVAL,
            valid_till=valid_till,
            expected_delivery_date=expected_delivery_date,
            notes=notes or "",
            created_by=actor,
        )
        _create_lines(purchase_order, lines)
        for purchase_request in linked:
            log_request_event(actor=actor, purchase_request=purchase_request, content=f"Added to direct purchase order {purchase_order.po_number} for {vendor.company_name}.")
        notify_role(
            role=User.Role.MANAGER,
            title="Direct PO awaiting approval",
            message=f"{purchase_order.po_number} for {vendor.company_name}: Rs. {purchase_order.total_amount}",
            link=f"/purchase-orders/{purchase_order.id}",
            entity=purchase_order,
        )

    logger.info("direct_po_created", extra={"entity": "purchase_order", "entity_id": str(purchase_order.id), "to_status": purchase_order.status})
    return purchase_order


def _linked_requests(purchase_order):
    return PurchaseRequest.objects.select_for_update().filter(id__in=purchase_order.lines.values("request_id")).order_by("request_number", "item_order")


def approve_po(*, actor, purchase_order):
    """Approve a PO awaiting approval; request items on it move to the delivery stage."""
    _require_role(actor, User.Role.MANAGER, message="Only managers can approve purchase orders.")
    with transaction.atomic():
        purchase_order = _lock(purchase_order)
        purchase_order.approved_by = actor
        purchase_order.approved_at = timezone.now()
        transition(purchase_order, PS.ORDERED, actor=actor, update_fields=["approved_by", "approved_at"])
        for purchase_request in _linked_requests(purchase_order):
            transition(purchase_request, RS.DELIVERY_STAGE, actor=actor)
            log_request_event(actor=actor, purchase_request=purchase_request, content=f"Purchase order {purchase_order.po_number} approved and placed with {purchase_order.vendor.company_name}.")
        notify(
            user=purchase_order.created_by,
            title=f"{purchase_order.po_number} approved",
            message=f"Direct PO for {purchase_order.vendor.company_name} can be placed.",
            type=Notification.Type.SUCCESS,
            link=f"/purchase-orders/{purchase_order.id}",
            entity=purchase_order,
        )
    return purchase_order


def reject_po(*, actor, purchase_order, reason):
    _require_role(actor, User.Role.MANAGER, message="Only managers can reject purchase orders.")
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError({"reason": "A reason is required when rejecting a purchase order."})
    with transaction.atomic():
        purchase_order = _lock(purchase_order)
        purchase_order.rejection_reason = reason
        transition(purchase_order, PS.REJECTED, actor=actor, update_fields=["rejection_reason"])
        # Linked items never left ready_for_po, so they can go on another PO.
        for purchase_request in _linked_requests(purchase_order):
            log_request_event(actor=actor, purchase_request=purchase_request, content=f"Purchase order {purchase_order.po_number} rejected: {reason}")
        notify(
            user=purchase_order.created_by,
            title=f"{purchase_order.po_number} rejected",
            message=reason,
            type=Notification.Type.ERROR,
            link=f"/purchase-orders/{purchase_order.id}",
            entity=purchase_order,
        )
    return purchase_order


def resubmit_po(*, actor, purchase_order, notes=None):
    """Clone a rejected direct PO into a fresh one awaiting approval; the rejected PO is kept as-is."""
    _require_role(actor, User.Role.PURCHASE_OFFICER, message="Only purchase officers can resubmit purchase orders.")
    if purchase_order.status != PS.REJECTED:
        raise InvalidTransition("Only rejected purchase orders can be resubmitted.")
    lines = [
        {
            "request": line.request,
            "item_description": line.item_description,
            "hsn_sac_code": line.hsn_sac_code,
            "quantity": line.quantity,
            "unit": line.unit,
            "unit_rate": line.unit_rate,
            "per_unit_basis": line.per_unit_basis,
            "per_unit_basis_unit": line.per_unit_basis_unit,
            "discount_percent": line.discount_percent,
            "gst_tax_rate": line.gst_tax_rate,
        }
        for line in purchase_order.lines.all()
    ]
    with transaction.atomic():
        _lock_direct_po_requests(lines, purchase_order.site)
        replacement = PurchaseOrder.objects.create(
            po_number=_next_po_number(),
            is_direct=purchase_order.is_direct,
            vendor=purchase_order.vendor,
            site=purchase_order.site,
            status=PS.PENDING_APPROVAL,
            valid_till=purchase_order.valid_till,
            expected_delivery_date=purchase_order.expected_delivery_date,
            notes=purchase_order.notes if notes is None else notes,
            created_by=actor,
        )
        _create_lines(replacement, lines)
        notify_role(
            role=User.Role.MANAGER,
            title="Direct PO resubmitted",
            message=f"{replacement.po_number} replaces rejected {purchase_order.po_number}.",
            link=f"/purchase-orders/{replacement.id}",
            entity=replacement,
        )
    return replacement


def mark_po_delivered(*, actor, purchase_order):
    _require_role(actor, User.Role.PURCHASE_OFFICER, message="Only purchase officers can mark purchase orders delivered.")
    with transaction.atomic():
        purchase_order = _lock(purchase_order)
        purchase_order.actual_delivery_date = timezone.now()
        transition(purchase_order, PS.DELIVERED, actor=actor, update_fields=["actual_delivery_date"])
        for purchase_request in _linked_requests(purchase_order):
            log_request_event(actor=actor, purchase_request=purchase_request, content=f"Purchase order {purchase_order.po_number} delivered by vendor.")
    return purchase_order


def cancel_po(*, actor, purchase_order, reason=""):
    """Cancel an ordered PO. No stock is returned; linked request items go back to ready_for_po."""
    _require_role(actor, User.Role.PURCHASE_OFFICER, message="Only purchase officers can cancel purchase orders.")
    with transaction.atomic():
        purchase_order = _lock(purchase_order)
        purchase_order.cancelled_at = timezone.now()
        if reason:
            purchase_order.notes = f"{purchase_order.notes}\nCancelled: {reason}".strip()
        transition(purchase_order, PS.CANCELLED, actor=actor, update_fields=["cancelled_at", "notes"])
        for purchase_request in _linked_requests(purchase_order):
            if purchase_request.status == RS.DELIVERY_STAGE:
                transition(purchase_request, RS.READY_FOR_PO, actor=actor)
            log_request_event(actor=actor, purchase_request=purchase_request, content=f"Purchase order {purchase_order.po_number} cancelled.")
    return purchase_order


def _party(user):
    if user is None:
        return None
    return {
        "id": str(user.id),
        "name": user.display_name,
        "role": user.role,
        "phone_number": user.phone_number,
        "signature_url": user.signature_url,
    }


def po_document(purchase_order):
    """Everything the printed purchase order shows, with the tax figures computed from its lines."""
    items = [
        {
            "item_description": line.item_description,
            "hsn_sac_code": line.hsn_sac_code,
            "quantity": line.quantity,
            "unit": line.unit,
            "unit_rate": line.unit_rate,
            "per_unit_basis": line.per_unit_basis,
            "per_unit_basis_unit": line.per_unit_basis_unit,
            "discount_percent": line.discount_percent,
            "gst_tax_rate": line.gst_tax_rate,
            "request_number": line.request.request_number if line.request_id else None,
        }
        for line in purchase_order.lines.select_related("request")
    ]
    vendor = purchase_order.vendor
    site = purchase_order.site
    return {
        "purchase_order": {
            "id": str(purchase_order.id),
            "po_number": purchase_order.po_number,
            "status": purchase_order.status,
            "is_direct": purchase_order.is_direct,
            "date": purchase_order.created_at.date(),
            "valid_till": purchase_order.valid_till,
            "expected_delivery_date": purchase_order.expected_delivery_date,
            "notes": purchase_order.notes,
        },
        "vendor": {
            "id": str(vendor.id),
            "company_name": vendor.company_name,
            "contact_name": vendor.contact_name,
            "email": vendor.email,
            "phone": vendor.phone,
            "gst_number": vendor.gst_number,
            "address": vendor.address,
        },
        "site": {"id": str(site.id), "name": site.name, "code": site.code, "address": site.address},
        "created_by": _party(purchase_order.created_by),
        "approved_by": _party(purchase_order.approved_by),
        **build_po_document(items),
    }
