import json
import logging

from django.core.serializers.json import DjangoJSONEncoder

from core.models import AuditLog

logger = logging.getLogger(__name__)


def get_request_id(request):
    return getattr(request, "request_id", None) or request.headers.get("X-Request-ID")


def _json_safe(value):
    if value is None:
        return None
    return json.loads(json.dumps(value, cls=DjangoJSONEncoder))


def create_audit_log(
    *,
    actor=None,
    action,
    entity,
    entity_id=None,
    before_snapshot=None,
    after_snapshot=None,
    request_id=None,
):
    entry = AuditLog.objects.create(
        actor=actor if actor is not None and actor.is_authenticated else None,
        action=action,
        entity=entity,
        entity_id=entity_id,
        before_snapshot=_json_safe(before_snapshot),
        after_snapshot=_json_safe(after_snapshot),
        request_id=request_id,
    )
    logger.debug("audit_recorded", extra={"entity": entity, "entity_id": str(entity_id) if entity_id else None})
    return entry


def create_audit_log_from_request(
    request,
    *,
    action,
    entity,
    entity_id=None,
    before_snapshot=None,
    after_snapshot=None,
):
    return create_audit_log(
        actor=getattr(request, "user", None),
        action=action,
        entity=entity,
        entity_id=entity_id,
        before_snapshot=before_snapshot,
        after_snapshot=after_snapshot,
        request_id=get_request_id(request),
    )


class AuditedMutationMixin:
    """Audits create/update/destroy of a ModelViewSet and exposes ``_audit`` to custom actions."""

    audit_entity = None

    def _audit(self, *, action, instance, before_snapshot=None, after_snapshot=None):
        create_audit_log_from_request(
            self.request,
            action=action,
            entity=self.audit_entity,
            entity_id=instance.id,
            before_snapshot=before_snapshot,
            after_snapshot=after_snapshot,
        )

    def perform_create(self, serializer):
        instance = serializer.save(created_by=self.request.user)
        self._audit(action=f"{self.audit_entity}.create", instance=instance, after_snapshot=self.get_serializer(instance).data)

    def perform_update(self, serializer):
        before_snapshot = self.get_serializer(serializer.instance).data
        instance = serializer.save()
        self._audit(
            action=f"{self.audit_entity}.update",
            instance=instance,
            before_snapshot=before_snapshot,
            after_snapshot=self.get_serializer(instance).data,
        )

    def perform_destroy(self, instance):
        before_snapshot = self.get_serializer(instance).data
        self._audit(action=f"{self.audit_entity}.delete", instance=instance, before_snapshot=before_snapshot)
        instance.delete()
