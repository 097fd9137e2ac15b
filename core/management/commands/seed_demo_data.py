from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand

from core.models import Site
from inventory.models import InventoryItem, StockMove, Vendor


class Command(BaseCommand):
    help = "Seed demo users, sites, vendors and inventory for local development."

    def _user(self, User, username, password, **defaults):
        user, created = User.objects.get_or_create(username=username, defaults={"is_active": True, **defaults})
        if created:
            user.set_password(password)
            user.save(update_fields=["password"])
        return user

    def handle(self, *args, **options):
        User = get_user_model()

        manager = self._user(
            User,
            "manager",
            "manager1234",
            email="manager@example.com",
            full_name="Plant Manager",
            role=User.Role.MANAGER,
            is_staff=True,
            is_superuser=True,
        )
        officer = self._user(
            User,
            "officer",
            "officer1234",
            email="officer@example.com",
            full_name="Purchase Officer",
            role=User.Role.PURCHASE_OFFICER,
            created_by=manager,
        )
        engineer = self._user(
            User,
            "engineer",
            "engineer1234",
            email="engineer@example.com",
            full_name="Site Engineer",
            role=User.Role.SITE_ENGINEER,
            created_by=manager,
        )

        site, _ = Site.objects.get_or_create(
            code="PLANT1",
            defaults={"name": "Assembly Plant 1", "address": "Plot 14, Industrial Area", "type": Site.Type.SITE, "created_by": manager},
        )
        Site.objects.get_or_create(
            code="STORE",
            defaults={"name": "Central Store", "address": "Warehouse Block B", "type": Site.Type.INVENTORY, "created_by": manager},
        )
        engineer.assigned_sites.add(site)

        vendor_rows = [
            ("Shakti Components Pvt Ltd", "Ravi Kumar", "sales@shakti.example.com", "27AAPFU0939F1ZV"),
            ("Vega Electricals", "Meena Shah", "orders@vega.example.com", "24AAACC1206D1ZM"),
            ("Orbit Cable Traders", "Anil Rao", "hello@orbit.example.com", "29AAGCR4375J1ZU"),
        ]
        vendors = []
        for company_name, contact_name, email, gst_number in vendor_rows:
            vendor, _ = Vendor.objects.get_or_create(
                company_name=company_name,
                defaults={"contact_name": contact_name, "email": email, "gst_number": gst_number, "created_by": officer},
            )
            vendors.append(vendor)

        item_rows = [
            ("Copper wire 2.5 sq mm", "85444999", "m", Decimal("500")),
            ("PCB standoff M3", "73181500", "nos", Decimal("2000")),
            ("Solder wire 0.8 mm", "80030010", "kg", Decimal("25")),
        ]
        for item_name, hsn_code, unit, stock in item_rows:
            item, created = InventoryItem.objects.get_or_create(
                item_name=item_name,
                defaults={"hsn_sac_code": hsn_code, "unit": unit, "central_stock": stock, "created_by": officer},
            )
            if created:
                item.vendors.add(*vendors[:2])
                StockMove.objects.create(
                    item=item,
                    quantity=stock,
                    balance_after=stock,
                    reason=StockMove.Reason.RECEIPT,
                    note="Opening stock",
                    actor=officer,
                )

        self.stdout.write(self.style.SUCCESS("Demo procurement data seeded."))
        self.stdout.write("Login users: manager/manager1234, officer/officer1234, engineer/engineer1234")
