import uuid

from django.contrib.auth.models import AbstractUser
from django.db import models
from django.db.models import Q
from django.db.models.functions import Lower


class Site(models.Model):
    class Type(models.TextChoices):
        SITE = "site", "Site"
        INVENTORY = "inventory", "Inventory"
        OTHER = "other", "Other"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255)
    code = models.CharField(max_length=32, unique=True, null=True, blank=True)
    address = models.TextField(blank=True, default="")
    description = models.TextField(blank=True, default="")
    type = models.CharField(max_length=16, choices=Type, default=Type.SITE)
    is_active = models.BooleanField(default=True)
    created_by = models.ForeignKey("User", on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]
        indexes = [
            models.Index(fields=["is_active", "name"], name="core_site_active_name_idx"),
        ]

    def __str__(self):
        return self.name

    def save(self, *args, **kwargs):
        if self.code is not None:
            self.code = self.code.strip().upper() or None
        super().save(*args, **kwargs)


class User(AbstractUser):
    class Role(models.TextChoices):
        SITE_ENGINEER = "site_engineer", "Site Engineer"
        PURCHASE_OFFICER = "purchase_officer", "Purchase Officer"
        MANAGER = "manager", "Manager"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    email = models.EmailField(blank=True)
    full_name = models.CharField(max_length=255, blank=True, default="")
    phone_number = models.CharField(max_length=32, blank=True, default="")
    address = models.TextField(blank=True, default="")
    role = models.CharField(max_length=32, choices=Role, default=Role.SITE_ENGINEER)
    assigned_sites = models.ManyToManyField(Site, blank=True, related_name="assigned_users")
    profile_image_url = models.URLField(max_length=500, blank=True, default="")
    signature_url = models.URLField(max_length=500, blank=True, default="")
    created_by = models.ForeignKey("self", on_delete=models.SET_NULL, null=True, blank=True, related_name="+")

    class Meta(AbstractUser.Meta):
        constraints = [
            models.UniqueConstraint(
                Lower("email"),
                condition=~Q(email=""),
                name="core_user_email_ci_unique",
            )
        ]
        indexes = [
            models.Index(fields=["role", "is_active"], name="core_user_role_active_idx"),
        ]

    def save(self, *args, **kwargs):
        if self.email:
            self.email = self.email.strip().lower()
        super().save(*args, **kwargs)

    @property
    def display_name(self):
        return self.full_name or self.get_full_name() or self.username


class AuditLog(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    actor = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True)
    action = models.CharField(max_length=64)
    entity = models.CharField(max_length=64)
    entity_id = models.UUIDField(null=True, blank=True)
    before_snapshot = models.JSONField(null=True, blank=True)
    after_snapshot = models.JSONField(null=True, blank=True)
    request_id = models.CharField(max_length=255, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=["created_at"], name="core_audit_created_idx"),
            models.Index(fields=["action", "created_at"], name="core_audit_action_idx"),
            models.Index(fields=["entity", "created_at"], name="core_audit_entity_idx"),
            models.Index(fields=["actor", "created_at"], name="core_audit_actor_idx"),
        ]
