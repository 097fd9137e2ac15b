"""Status state machines for requests, cost comparisons and purchase orders.

Every status change in the procurement app goes through :func:`transition`,
which checks the tables below and records the change on the
``procurement.workflow`` logger.
"""

import logging

from common.exceptions import InvalidTransition
from procurement.models import CostComparison, PurchaseOrder, PurchaseRequest

logger = logging.getLogger("procurement.workflow")

RS = PurchaseRequest.Status
CS = CostComparison.Status
PS = PurchaseOrder.Status

REQUEST_TRANSITIONS = {
    RS.DRAFT: {RS.PENDING, RS.CANCELLED},
    RS.PENDING: {RS.APPROVED, RS.REJECTED, RS.CANCELLED},
    RS.APPROVED: {RS.READY_FOR_CC, RS.READY_FOR_PO, RS.READY_FOR_DELIVERY, RS.CANCELLED},
    RS.READY_FOR_CC: {RS.CC_PENDING, RS.READY_FOR_PO, RS.READY_FOR_DELIVERY, RS.CANCELLED},
    RS.CC_PENDING: {RS.READY_FOR_PO, RS.READY_FOR_CC},
    RS.READY_FOR_PO: {RS.DELIVERY_STAGE, RS.CANCELLED},
    RS.READY_FOR_DELIVERY: {RS.DELIVERY_STAGE, RS.DELIVERED},
    # Back to ready_for_po when the purchase order carrying the item is cancelled.
    RS.DELIVERY_STAGE: {RS.DELIVERED, RS.READY_FOR_PO},
    RS.DELIVERED: set(),
    RS.REJECTED: set(),
    RS.CANCELLED: set(),
}

COMPARISON_TRANSITIONS = {
    CS.DRAFT: {CS.CC_PENDING},
    CS.CC_PENDING: {CS.CC_APPROVED, CS.CC_REJECTED},
    CS.CC_REJECTED: {CS.CC_PENDING},
    CS.CC_APPROVED: set(),
}

PURCHASE_ORDER_TRANSITIONS = {
    PS.PENDING_APPROVAL: {PS.ORDERED, PS.REJECTED},
    PS.ORDERED: {PS.DELIVERED, PS.CANCELLED},
    PS.DELIVERED: set(),
    PS.REJECTED: set(),
    PS.CANCELLED: set(),
}

TRANSITION_TABLES = {
    PurchaseRequest: REQUEST_TRANSITIONS,
    CostComparison: COMPARISON_TRANSITIONS,
    PurchaseOrder: PURCHASE_ORDER_TRANSITIONS,
}


def allowed_transitions(instance):
    return TRANSITION_TABLES[type(instance)].get(instance.status, set())


def can_transition(instance, target):
    return target in allowed_transitions(instance)


def ensure_transition(instance, target):
    if not can_transition(instance, target):
        label = instance._meta.verbose_name
        raise InvalidTransition(f"Cannot move {label} from '{instance.status}' to '{target}'.")


def transition(instance, target, *, actor=None, update_fields=()):
    """Validate and persist a status change; ``update_fields`` lists other fields set by the caller."""
    ensure_transition(instance, target)
    previous = instance.status
    instance.status = target
    instance.save(update_fields=["status", *update_fields, "updated_at"])
    logger.info(
        "status_transition",
        extra={
            "entity": instance._meta.model_name,
            "entity_id": str(instance.id),
            "from_status": previous,
            "to_status": str(target),
            "user_id": str(actor.id) if actor is not None else None,
        },
    )
    return instance
