from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError as DjangoValidationError
from django.test import TestCase
from rest_framework.exceptions import NotFound, ValidationError
from rest_framework.test import APIClient

from core.models import AuditLog
from inventory.models import InventoryItem, StockMove, Vendor, gst_number_validator
from inventory.services import deduct_stock, remove_vendor


class DeductStockTests(TestCase):
    def setUp(self):
        self.officer = get_user_model().objects.create_user(username="officer", password="pass1234", role="purchase_officer")
        self.item = InventoryItem.objects.create(item_name="Copper Wire", unit="m", central_stock=Decimal("50"))

    def test_deduction_is_exact_and_writes_ledger(self):
        new_stock = deduct_stock(item_name="copper wire", quantity=Decimal("12.5"), reason="Request #001", actor=self.officer)

        self.assertEqual(new_stock, Decimal("37.50"))
        self.item.refresh_from_db()
        self.assertEqual(self.item.central_stock, Decimal("37.50"))
        move = StockMove.objects.get(item=self.item)
        self.assertEqual(move.quantity, Decimal("-12.50"))
        self.assertEqual(move.balance_after, Decimal("37.50"))
        self.assertEqual(move.reason, StockMove.Reason.FULFILMENT)

    def test_deducting_more_than_stock_fails_and_leaves_stock(self):
        with self.assertRaises(ValidationError):
            deduct_stock(item_name="Copper Wire", quantity=Decimal("50.01"), actor=self.officer)

        self.item.refresh_from_db()
        self.assertEqual(self.item.central_stock, Decimal("50"))
        self.assertFalse(StockMove.objects.exists())

    def test_entire_stock_can_be_taken(self):
        self.assertEqual(deduct_stock(item_name="Copper Wire", quantity=50), Decimal("0"))

    def test_quantity_must_be_positive(self):
        for quantity in (0, -1, "abc"):
            with self.assertRaises(ValidationError):
                deduct_stock(item_name="Copper Wire", quantity=quantity)

    def test_unknown_item_is_not_found(self):
        with self.assertRaises(NotFound):
            deduct_stock(item_name="Solder", quantity=1)


class VendorTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        User = get_user_model()
        self.officer = User.objects.create_user(username="officer", password="pass1234", role=User.Role.PURCHASE_OFFICER)
        self.engineer = User.objects.create_user(username="engineer", password="pass1234", role=User.Role.SITE_ENGINEER)
        self.manager = User.objects.create_user(username="manager", password="pass1234", role=User.Role.MANAGER)

    def test_gst_number_pattern(self):
        gst_number_validator("27AAPFU0939F1ZV")
        for value in ("27AAPFU0939F1Z", "27aapfu0939f1zv", "27AAPFU0939F0ZV", "27AAPFU0939F1XV"):
            with self.assertRaises(DjangoValidationError, msg=value):
                gst_number_validator(value)

    def test_create_normalises_gst_and_email(self):
        self.client.force_authenticate(user=self.officer)

        response = self.client.post(
            "/api/v1/vendors/",
            {"company_name": " Vega Electricals ", "email": "Orders@Vega.Example.com", "gst_number": "24aaacc1206d1zm"},
            format="json",
        )

        self.assertEqual(response.status_code, 201, response.content)
        vendor = Vendor.objects.get(id=response.json()["id"])
        self.assertEqual(vendor.company_name, "Vega Electricals")
        self.assertEqual(vendor.gst_number, "24AAACC1206D1ZM")
        self.assertEqual(vendor.email, "orders@vega.example.com")
        self.assertEqual(vendor.created_by, self.officer)
        self.assertTrue(AuditLog.objects.filter(action="vendor.create", entity_id=vendor.id).exists())

    def test_invalid_gst_and_email_are_rejected(self):
        self.client.force_authenticate(user=self.officer)

        response = self.client.post(
            "/api/v1/vendors/",
            {"company_name": "Bad Co", "email": "not-an-email", "gst_number": "12345"},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(set(response.json()["errors"].keys()), {"email", "gst_number"})

    def test_unused_vendor_is_deleted(self):
        vendor = Vendor.objects.create(company_name="Orbit")
        self.client.force_authenticate(user=self.officer)

        response = self.client.delete(f"/api/v1/vendors/{vendor.id}/")

        self.assertEqual(response.status_code, 204)
        self.assertFalse(Vendor.objects.filter(id=vendor.id).exists())
        self.assertTrue(AuditLog.objects.filter(action="vendor.delete", entity_id=vendor.id).exists())

    def test_referenced_vendor_is_deactivated(self):
        vendor = Vendor.objects.create(company_name="Shakti")
        InventoryItem.objects.create(item_name="Lugs").vendors.add(vendor)
        self.client.force_authenticate(user=self.officer)

        response = self.client.delete(f"/api/v1/vendors/{vendor.id}/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "deactivated")
        vendor.refresh_from_db()
        self.assertFalse(vendor.is_active)
        self.assertEqual(remove_vendor(vendor), "deactivated")

    def test_manager_can_read_but_not_write_vendors(self):
        self.client.force_authenticate(user=self.manager)

        self.assertEqual(self.client.get("/api/v1/vendors/").status_code, 200)
        self.assertEqual(self.client.post("/api/v1/vendors/", {"company_name": "X"}, format="json").status_code, 403)

    def test_site_engineer_cannot_see_vendors(self):
        self.client.force_authenticate(user=self.engineer)

        response = self.client.get("/api/v1/vendors/")

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["code"], "permission_denied")


class InventoryItemTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        User = get_user_model()
        self.officer = User.objects.create_user(username="officer", password="pass1234", role=User.Role.PURCHASE_OFFICER)
        self.engineer = User.objects.create_user(username="engineer", password="pass1234", role=User.Role.SITE_ENGINEER)
        self.item = InventoryItem.objects.create(item_name="Solder Wire", unit="kg", central_stock=Decimal("10"))

    def test_item_names_are_unique_ignoring_case(self):
        self.client.force_authenticate(user=self.officer)

        response = self.client.post("/api/v1/inventory-items/", {"item_name": "solder wire", "unit": "kg"}, format="json")

        self.assertEqual(response.status_code, 400)

    def test_stock_cannot_be_set_directly(self):
        self.client.force_authenticate(user=self.officer)

        response = self.client.patch(f"/api/v1/inventory-items/{self.item.id}/", {"central_stock": "999"}, format="json")

        self.assertEqual(response.status_code, 200)
        self.item.refresh_from_db()
        self.assertEqual(self.item.central_stock, Decimal("10"))

    def test_lookup_is_case_insensitive(self):
        self.client.force_authenticate(user=self.engineer)

        response = self.client.get("/api/v1/inventory-items/lookup/?name=SOLDER%20WIRE")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["id"], str(self.item.id))
        self.assertEqual(self.client.get("/api/v1/inventory-items/lookup/?name=flux").status_code, 404)

    def test_adjust_stock_both_directions(self):
        self.client.force_authenticate(user=self.officer)
        url = f"/api/v1/inventory-items/{self.item.id}/adjust-stock/"

        response = self.client.post(url, {"delta": "5", "reason": "Cycle count"}, format="json")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(Decimal(response.json()["central_stock"]), Decimal("15"))

        response = self.client.post(url, {"delta": "-20", "reason": "Scrap"}, format="json")
        self.assertEqual(response.status_code, 400)

        response = self.client.post(url, {"delta": "-15", "reason": "Scrap"}, format="json")
        self.assertEqual(Decimal(response.json()["central_stock"]), Decimal("0"))
        self.assertEqual(
            sorted(StockMove.objects.filter(item=self.item).values_list("quantity", flat=True)),
            [Decimal("-15"), Decimal("5")],
        )
        self.assertTrue(AuditLog.objects.filter(action="stock.adjustment", entity_id=self.item.id).exists())

    def test_engineer_cannot_adjust_stock(self):
        self.client.force_authenticate(user=self.engineer)

        response = self.client.post(f"/api/v1/inventory-items/{self.item.id}/adjust-stock/", {"delta": "5", "reason": "x"}, format="json")

        self.assertEqual(response.status_code, 403)

    def test_delete_deactivates_and_hides_item(self):
        self.client.force_authenticate(user=self.officer)

        response = self.client.delete(f"/api/v1/inventory-items/{self.item.id}/")

        self.assertEqual(response.status_code, 204)
        self.item.refresh_from_db()
        self.assertFalse(self.item.is_active)
        self.assertEqual(self.client.get("/api/v1/inventory-items/").json()["count"], 0)
        self.assertEqual(self.client.get("/api/v1/inventory-items/?include_inactive=true").json()["count"], 1)

    def test_link_vendor_rejects_inactive_vendor(self):
        vendor = Vendor.objects.create(company_name="Dormant", is_active=False)
        self.client.force_authenticate(user=self.officer)

        response = self.client.post(f"/api/v1/inventory-items/{self.item.id}/link-vendor/", {"vendor": str(vendor.id)}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertFalse(self.item.vendors.exists())
