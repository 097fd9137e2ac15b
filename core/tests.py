from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from django.conf import settings
from django.contrib.auth import get_user_model
from django.test import TestCase, override_settings
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import AccessToken

from core.models import AuditLog, Site
from inventory.models import Vendor
from procurement.models import PurchaseOrder

STRONG_PASSWORD = "Plant-Floor-2026!"


class UserAdministrationTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        User = get_user_model()
        self.manager = User.objects.create_user(username="manager", password=STRONG_PASSWORD, role=User.Role.MANAGER)
        self.officer = User.objects.create_user(username="officer", password=STRONG_PASSWORD, role=User.Role.PURCHASE_OFFICER)
        self.site = Site.objects.create(name="Plant 1", code="p1")

    def test_manager_creates_user_with_sites(self):
        self.client.force_authenticate(user=self.manager)

        response = self.client.post(
            "/api/v1/users/",
            {
                "username": "eng1",
                "email": "Eng1@Example.com",
                "password": STRONG_PASSWORD,
                "full_name": "Asha Patel",
                "role": "site_engineer",
                "assigned_sites": [str(self.site.id)],
            },
            format="json",
        )

        self.assertEqual(response.status_code, 201, response.content)
        self.assertNotIn("password", response.json())
        user = get_user_model().objects.get(username="eng1")
        self.assertEqual(user.email, "eng1@example.com")
        self.assertEqual(user.created_by, self.manager)
        self.assertTrue(user.check_password(STRONG_PASSWORD))
        self.assertEqual(list(user.assigned_sites.all()), [self.site])
        self.assertTrue(AuditLog.objects.filter(action="user.create", entity_id=user.id, actor=self.manager).exists())

    def test_duplicate_email_is_rejected_ignoring_case(self):
        get_user_model().objects.create_user(username="taken", email="taken@example.com", password=STRONG_PASSWORD)
        self.client.force_authenticate(user=self.manager)

        response = self.client.post(
            "/api/v1/users/",
            {"username": "other", "email": "TAKEN@example.com", "password": STRONG_PASSWORD},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertIn("email", response.json()["errors"])

    def test_non_manager_cannot_manage_users(self):
        self.client.force_authenticate(user=self.officer)

        response = self.client.get("/api/v1/users/")

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["code"], "permission_denied")

    def test_disable_and_enable_user(self):
        self.client.force_authenticate(user=self.manager)

        response = self.client.post(f"/api/v1/users/{self.officer.id}/disable/")
        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.json()["is_active"])

        response = self.client.post(f"/api/v1/users/{self.officer.id}/enable/")
        self.assertTrue(response.json()["is_active"])
        self.assertEqual(
            list(AuditLog.objects.filter(entity_id=self.officer.id).order_by("action").values_list("action", flat=True)),
            ["user.disable", "user.enable"],
        )

    def test_manager_cannot_disable_self(self):
        self.client.force_authenticate(user=self.manager)

        response = self.client.post(f"/api/v1/users/{self.manager.id}/disable/")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["message"], "You cannot disable your own account.")
        self.manager.refresh_from_db()
        self.assertTrue(self.manager.is_active)

    def test_users_cannot_be_deleted(self):
        self.client.force_authenticate(user=self.manager)

        response = self.client.delete(f"/api/v1/users/{self.officer.id}/")

        self.assertEqual(response.status_code, 405)


class SiteTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        User = get_user_model()
        self.manager = User.objects.create_user(username="manager", password=STRONG_PASSWORD, role=User.Role.MANAGER)
        self.officer = User.objects.create_user(username="officer", password=STRONG_PASSWORD, role=User.Role.PURCHASE_OFFICER)
        self.engineer = User.objects.create_user(username="engineer", password=STRONG_PASSWORD, role=User.Role.SITE_ENGINEER)
        self.site_a = Site.objects.create(name="Plant A")
        self.site_b = Site.objects.create(name="Plant B")
        self.engineer.assigned_sites.add(self.site_a)

    def _ids(self, response):
        return {row["id"] for row in response.json()["results"]}

    def test_engineer_sees_only_assigned_sites(self):
        self.client.force_authenticate(user=self.engineer)
        self.assertEqual(self._ids(self.client.get("/api/v1/sites/")), {str(self.site_a.id)})

        self.client.force_authenticate(user=self.officer)
        self.assertEqual(self._ids(self.client.get("/api/v1/sites/")), {str(self.site_a.id), str(self.site_b.id)})

    def test_site_code_is_upper_cased_and_blank_becomes_null(self):
        self.client.force_authenticate(user=self.manager)

        response = self.client.post("/api/v1/sites/", {"name": "Store", "code": "st-01"}, format="json")
        self.assertEqual(response.status_code, 201, response.content)
        self.assertEqual(response.json()["code"], "ST-01")

        response = self.client.post("/api/v1/sites/", {"name": "Yard", "code": ""}, format="json")
        self.assertEqual(response.status_code, 201, response.content)
        self.assertIsNone(response.json()["code"])

    def test_only_manager_creates_sites(self):
        self.client.force_authenticate(user=self.officer)

        response = self.client.post("/api/v1/sites/", {"name": "Yard"}, format="json")

        self.assertEqual(response.status_code, 403)

    def test_usage_counts_assigned_users(self):
        self.client.force_authenticate(user=self.manager)

        response = self.client.get(f"/api/v1/sites/{self.site_a.id}/usage/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"assigned_users": 1, "active_assigned_users": 1, "requests": 0, "open_requests": 0, "purchase_orders": 0})

    def test_toggle_status_blocked_by_active_assigned_user(self):
        self.client.force_authenticate(user=self.manager)

        response = self.client.post(f"/api/v1/sites/{self.site_a.id}/toggle-status/")
        self.assertEqual(response.status_code, 400)
        self.site_a.refresh_from_db()
        self.assertTrue(self.site_a.is_active)

        self.engineer.is_active = False
        self.engineer.save(update_fields=["is_active"])
        response = self.client.post(f"/api/v1/sites/{self.site_a.id}/toggle-status/")
        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.json()["is_active"])

    def test_delete_blocked_while_assigned(self):
        self.client.force_authenticate(user=self.manager)

        response = self.client.delete(f"/api/v1/sites/{self.site_a.id}/")
        self.assertEqual(response.status_code, 400)
        self.assertTrue(Site.objects.filter(id=self.site_a.id).exists())

        response = self.client.delete(f"/api/v1/sites/{self.site_b.id}/")
        self.assertEqual(response.status_code, 204)
        self.assertFalse(Site.objects.filter(id=self.site_b.id).exists())
        self.assertTrue(AuditLog.objects.filter(action="site.delete", entity_id=self.site_b.id).exists())

    def test_delete_blocked_by_purchase_orders(self):
        vendor = Vendor.objects.create(company_name="Orbit Cables")
        PurchaseOrder.objects.create(po_number="PO-202601-0001", vendor=vendor, site=self.site_b, created_by=self.officer)
        self.client.force_authenticate(user=self.manager)

        self.assertEqual(self.client.get(f"/api/v1/sites/{self.site_b.id}/usage/").json()["purchase_orders"], 1)
        response = self.client.delete(f"/api/v1/sites/{self.site_b.id}/")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["message"], "Cannot delete site: it is used in 1 purchase order(s).")
        self.assertTrue(Site.objects.filter(id=self.site_b.id).exists())


class ProfileTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        User = get_user_model()
        self.engineer = User.objects.create_user(username="engineer", password=STRONG_PASSWORD, role=User.Role.SITE_ENGINEER)
        self.site = Site.objects.create(name="Plant A")
        self.engineer.assigned_sites.add(self.site)

    def test_profile_shows_assigned_sites(self):
        self.client.force_authenticate(user=self.engineer)

        response = self.client.get("/api/v1/me/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["role"], "site_engineer")
        self.assertEqual([site["name"] for site in response.json()["assigned_sites"]], ["Plant A"])

    def test_profile_update_cannot_change_role(self):
        self.client.force_authenticate(user=self.engineer)

        response = self.client.patch("/api/v1/me/", {"full_name": "Asha Patel", "role": "manager"}, format="json")

        self.assertEqual(response.status_code, 200)
        self.engineer.refresh_from_db()
        self.assertEqual(self.engineer.full_name, "Asha Patel")
        self.assertEqual(self.engineer.role, "site_engineer")
        self.assertTrue(AuditLog.objects.filter(action="user.profile_update", entity_id=self.engineer.id).exists())

    def test_profile_requires_authentication(self):
        response = self.client.get("/api/v1/me/")

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["code"], "not_authenticated")


class TokenTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        User = get_user_model()
        self.user = User.objects.create_user(
            username="officer",
            email="officer@example.com",
            password=STRONG_PASSWORD,
            full_name="Ravi Kumar",
            role=User.Role.PURCHASE_OFFICER,
        )

    def test_token_carries_role_claims(self):
        response = self.client.post("/api/v1/token/", {"username": "officer", "password": STRONG_PASSWORD}, format="json")

        self.assertEqual(response.status_code, 200, response.content)
        token = AccessToken(response.json()["access"])
        self.assertEqual(token["role"], "purchase_officer")
        self.assertEqual(token["full_name"], "Ravi Kumar")
        self.assertEqual(token["username"], "officer")
        self.assertEqual(token["user_id"], str(self.user.id))

    def test_login_with_email(self):
        response = self.client.post("/api/v1/token/", {"username": "Officer@Example.com", "password": STRONG_PASSWORD}, format="json")

        self.assertEqual(response.status_code, 200, response.content)
        self.assertIn("refresh", response.json())

    def test_wrong_password_is_rejected(self):
        response = self.client.post("/api/v1/token/", {"username": "officer", "password": "nope"}, format="json")

        self.assertEqual(response.status_code, 401)

    def test_disabled_user_cannot_log_in(self):
        self.user.is_active = False
        self.user.save(update_fields=["is_active"])

        response = self.client.post("/api/v1/token/", {"username": "officer", "password": STRONG_PASSWORD}, format="json")

        self.assertEqual(response.status_code, 401)


class DiscoveryTests(TestCase):
    def setUp(self):
        self.client = APIClient()

    def test_openid_configuration(self):
        response = self.client.get("/.well-known/openid-configuration")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response["Cache-Control"], "public, max-age=3600")
        payload = response.json()
        self.assertTrue(payload["jwks_uri"].endswith("/.well-known/jwks.json"))
        self.assertTrue(payload["token_endpoint"].endswith("/api/v1/token/"))
        self.assertIn("role", payload["claims_supported"])

    def test_jwks_is_empty_for_hmac_signing(self):
        response = self.client.get("/.well-known/jwks.json")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"keys": []})

    def test_jwks_publishes_rsa_key(self):
        private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        public_pem = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        ).decode("utf-8")

        with override_settings(SIMPLE_JWT={**settings.SIMPLE_JWT, "ALGORITHM": "RS256", "VERIFYING_KEY": public_pem}):
            response = self.client.get("/.well-known/jwks.json")

        self.assertEqual(response.status_code, 200)
        (key,) = response.json()["keys"]
        self.assertEqual(key["kty"], "RSA")
        self.assertEqual(key["use"], "sig")
        self.assertEqual(key["alg"], "RS256")
        self.assertEqual(key["kid"], settings.JWT_KEY_ID)

    def test_health_endpoints(self):
        self.assertEqual(self.client.get("/healthz/").json()["status"], "ok")
        self.assertEqual(self.client.get("/readyz/").json()["status"], "ready")


class AuditLogTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        User = get_user_model()
        self.manager = User.objects.create_user(username="manager", password=STRONG_PASSWORD, role=User.Role.MANAGER)
        self.officer = User.objects.create_user(username="officer", password=STRONG_PASSWORD, role=User.Role.PURCHASE_OFFICER)
        AuditLog.objects.create(actor=self.officer, action="vendor.create", entity="vendor")
        AuditLog.objects.create(actor=self.manager, action="site.create", entity="site")

    def test_manager_lists_and_filters(self):
        self.client.force_authenticate(user=self.manager)

        response = self.client.get("/api/v1/admin/audit-logs/?entity=vendor")

        self.assertEqual(response.status_code, 200)
        self.assertEqual([row["action"] for row in response.json()["results"]], ["vendor.create"])

    def test_export_is_csv(self):
        self.client.force_authenticate(user=self.manager)

        response = self.client.get("/api/v1/admin/audit-logs/export/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response["Content-Type"], "text/csv")
        lines = response.content.decode("utf-8").strip().splitlines()
        self.assertEqual(lines[0], "id,created_at,actor,action,entity,entity_id,request_id")
        self.assertEqual(len(lines), 3)

    def test_officer_cannot_read_audit_logs(self):
        self.client.force_authenticate(user=self.officer)

        self.assertEqual(self.client.get("/api/v1/admin/audit-logs/").status_code, 403)
        self.assertEqual(self.client.get("/api/v1/admin/audit-logs/export/").status_code, 403)
