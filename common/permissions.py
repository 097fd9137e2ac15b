import logging

from rest_framework.permissions import BasePermission

from core.models import User

logger = logging.getLogger("security.authorization")

ALL_ROLES = {User.Role.SITE_ENGINEER, User.Role.PURCHASE_OFFICER, User.Role.MANAGER}

ROLE_CAPABILITY_MATRIX = {
    "profile.self": ALL_ROLES,
    "user.manage": {User.Role.MANAGER},
    "site.view": ALL_ROLES,
    "site.manage": {User.Role.MANAGER},
    "vendor.view": {User.Role.PURCHASE_OFFICER, User.Role.MANAGER},
    "vendor.manage": {User.Role.PURCHASE_OFFICER},
    "inventory.view": ALL_ROLES,
    "inventory.manage": {User.Role.PURCHASE_OFFICER},
    "request.view": ALL_ROLES,
    "request.create": {User.Role.SITE_ENGINEER},
    "request.cancel": {User.Role.SITE_ENGINEER, User.Role.MANAGER},
    "request.review": {User.Role.MANAGER},
    "request.process": {User.Role.PURCHASE_OFFICER},
    "request.deliver": {User.Role.SITE_ENGINEER},
    "request.note": ALL_ROLES,
    "comparison.view": {User.Role.PURCHASE_OFFICER, User.Role.MANAGER},
    "comparison.edit": {User.Role.PURCHASE_OFFICER},
    "comparison.review": {User.Role.MANAGER},
    "po.view": {User.Role.PURCHASE_OFFICER, User.Role.MANAGER},
    "po.create": {User.Role.PURCHASE_OFFICER},
    "po.approve": {User.Role.MANAGER},
    "po.fulfil": {User.Role.PURCHASE_OFFICER},
    "notification.self": ALL_ROLES,
    "audit.view": {User.Role.MANAGER},
}


def get_user_role(user):
    if not user or not user.is_authenticated:
        return None
    if user.is_superuser:
        return User.Role.MANAGER
    role = getattr(user, "role", None)
    if role:
        return role
    return User.Role.SITE_ENGINEER


def user_has_role(user, *roles):
    return get_user_role(user) in roles


def user_has_capability(user, capability):
    if not user or not user.is_authenticated:
        return False
    if user.is_superuser:
        return True
    allowed_roles = ROLE_CAPABILITY_MATRIX.get(capability)
    if not allowed_roles:
        return False
    return get_user_role(user) in allowed_roles


class RoleCapabilityPermission(BasePermission):
    """Permission class that validates role capability by action/method and logs denied attempts."""

    message = "You do not have permission to perform this action."

    def has_permission(self, request, view):
        capability_map = getattr(view, "permission_action_map", {})
        action_key = getattr(view, "action", None) or request.method.lower()
        capability = capability_map.get(action_key)
        if capability is None:
            return True

        allowed = user_has_capability(request.user, capability)
        if not allowed:
            logger.warning(
                "permission_denied capability=%s user=%s role=%s method=%s path=%s view=%s action=%s",
                capability,
                getattr(request.user, "username", "anonymous"),
                get_user_role(request.user),
                request.method,
                request.path,
                view.__class__.__name__,
                action_key,
            )
        return allowed
