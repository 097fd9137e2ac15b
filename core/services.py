import logging

from django.contrib.auth import get_user_model
from django.db import transaction
from rest_framework.exceptions import ValidationError

User = get_user_model()
logger = logging.getLogger(__name__)

# Mirrors PurchaseRequest terminal statuses; kept as strings so core does not import procurement.
CLOSED_REQUEST_STATUSES = ("delivered", "rejected", "cancelled")


def site_usage(site):
    """Count what still references a site: assigned users, requests raised against it and its purchase orders."""
    return {
        "assigned_users": site.assigned_users.count(),
        "active_assigned_users": site.assigned_users.filter(is_active=True).count(),
        "requests": site.purchase_requests.count(),
        "open_requests": site.purchase_requests.exclude(status__in=CLOSED_REQUEST_STATUSES).count(),
        "purchase_orders": site.purchase_orders.count(),
    }


def toggle_site_status(site):
    usage = site_usage(site)
    if site.is_active:
        if usage["active_assigned_users"]:
            raise ValidationError(
                f"Cannot deactivate site: it is assigned to {usage['active_assigned_users']} active user(s). "
                "Unassign them first."
            )
        if usage["open_requests"]:
            raise ValidationError(f"Cannot deactivate site: {usage['open_requests']} open request(s) still use it.")

    site.is_active = not site.is_active
    site.save(update_fields=["is_active", "updated_at"])
    logger.info("site_status_changed", extra={"entity": "site", "entity_id": str(site.id), "to_status": "active" if site.is_active else "inactive"})
    return site


def delete_site(site):
    usage = site_usage(site)
    if usage["assigned_users"]:
        raise ValidationError(f"Cannot delete site: it is assigned to {usage['assigned_users']} user(s).")
    if usage["requests"]:
        raise ValidationError(f"Cannot delete site: it is used in {usage['requests']} request(s).")
    if usage["purchase_orders"]:
        raise ValidationError(f"Cannot delete site: it is used in {usage['purchase_orders']} purchase order(s).")
    site.delete()


def set_user_active(*, actor, user, is_active):
    if not is_active and user.pk == actor.pk:
        raise ValidationError("You cannot disable your own account.")
    user.is_active = is_active
    user.save(update_fields=["is_active"])
    logger.info("user_status_changed", extra={"entity": "user", "entity_id": str(user.id), "to_status": "active" if is_active else "disabled"})
    return user


@transaction.atomic
def create_user(*, actor, password, assigned_sites=None, **fields):
    user = User(created_by=actor, **fields)
    user.set_password(password)
    user.save()
    if assigned_sites is not None:
        user.assigned_sites.set(assigned_sites)
    return user
