from decimal import Decimal

from django.contrib.auth import get_user_model
from django.test import SimpleTestCase, TestCase, override_settings
from django.utils import timezone
from rest_framework.test import APIClient

from common.exceptions import InvalidTransition
from core.models import Site
from inventory.models import InventoryItem, Vendor
from notifications.models import Notification
from procurement import services
from procurement.documents import amount_in_words, build_po_document, compute_line
from procurement.models import CostComparison, DocumentSequence, PurchaseOrder, PurchaseRequest, RequestNote, VendorQuote
from procurement.serializers import QuoteInputSerializer
from procurement.workflow import can_transition, transition


class PODocumentTests(SimpleTestCase):
    def test_grand_total_rounds_to_whole_rupee_with_round_off(self):
        document = build_po_document([{"quantity": "1", "unit_rate": "12345.67", "gst_tax_rate": "0"}])

        self.assertEqual(document["totals"]["raw_total"], Decimal("12345.67"))
        self.assertEqual(document["totals"]["grand_total"], Decimal("12346"))
        self.assertEqual(document["totals"]["round_off"], Decimal("0.33"))

    def test_gst_is_split_evenly_between_cgst_and_sgst(self):
        figures = compute_line(quantity=Decimal("2"), unit_rate=Decimal("500"), gst_tax_rate=Decimal("18"))

        self.assertEqual(figures["taxable_value"], Decimal("1000"))
        self.assertEqual(figures["cgst_rate"], Decimal("9"))
        self.assertEqual(figures["sgst_rate"], Decimal("9"))
        self.assertEqual(figures["cgst_amount"] + figures["sgst_amount"], figures["taxable_value"] * Decimal("18") / 100)
        self.assertEqual(figures["item_total"], Decimal("1180"))

    def test_discount_and_per_unit_basis_apply_before_tax(self):
        figures = compute_line(
            quantity=Decimal("200"),
            unit_rate=Decimal("50"),
            per_unit_basis=Decimal("100"),
            discount_percent=Decimal("10"),
            gst_tax_rate=Decimal("12"),
        )

        self.assertEqual(figures["taxable_value"], Decimal("90"))
        self.assertEqual(figures["item_total"], Decimal("100.8"))

    def test_tax_groups_follow_hsn_and_rate_in_first_seen_order(self):
        document = build_po_document(
            [
                {"quantity": "1", "unit_rate": "100", "gst_tax_rate": "18", "hsn_sac_code": "8544"},
                {"quantity": "1", "unit_rate": "50", "gst_tax_rate": "5"},
                {"quantity": "2", "unit_rate": "100", "gst_tax_rate": "18", "hsn_sac_code": "8544"},
            ]
        )

        groups = document["tax_groups"]
        self.assertEqual([(group["hsn_sac_code"], group["gst_tax_rate"]) for group in groups], [("8544", Decimal("18.00")), ("NA", Decimal("5.00"))])
        self.assertEqual(groups[0]["taxable_value"], Decimal("300.00"))
        self.assertEqual(groups[0]["total_tax"], Decimal("54.00"))
        self.assertEqual([item["serial"] for item in document["items"]], [1, 2, 3])

    def test_amount_in_words_uses_indian_numbering(self):
        self.assertEqual(amount_in_words(Decimal("12346")), "Rupees Twelve thousand three hundred and forty six Only")
        self.assertEqual(amount_in_words(Decimal("105000")), "Rupees One lakh five thousand Only")


class QuoteRankingTests(SimpleTestCase):
    def test_final_unit_price_applies_discount_then_gst(self):
        self.assertEqual(services.final_unit_price(Decimal("90"), Decimal("5"), Decimal("18")), Decimal("100.89"))
        self.assertEqual(services.final_unit_price(Decimal("100")), Decimal("100"))

    def test_cheapest_total_wins(self):
        quote_a = VendorQuote(unit_price=Decimal("100"), gst_percent=Decimal("18"), position=1)
        quote_b = VendorQuote(unit_price=Decimal("90"), discount_percent=Decimal("5"), gst_percent=Decimal("18"), position=2)

        rows = services.rank_quotes([quote_a, quote_b], Decimal("10"))

        self.assertEqual([row["total"] for row in rows], [Decimal("1180.00"), Decimal("1008.90")])
        self.assertEqual([row["is_best"] for row in rows], [False, True])

    def test_tie_goes_to_earliest_quote(self):
        later = VendorQuote(unit_price=Decimal("40"), position=2)
        earlier = VendorQuote(unit_price=Decimal("40"), position=1)

        rows = services.rank_quotes([later, earlier], Decimal("3"))

        self.assertIs(rows[0]["quote"], earlier)
        self.assertTrue(rows[0]["is_best"])
        self.assertFalse(rows[1]["is_best"])

    def test_no_quotes_has_no_best(self):
        self.assertEqual(services.rank_quotes([], Decimal("1")), [])


class ProcurementFixtureMixin:
    def setUp(self):
        self.client = APIClient()
        User = get_user_model()
        self.engineer = User.objects.create_user(username="eng", password="pass1234", role=User.Role.SITE_ENGINEER)
        self.other_engineer = User.objects.create_user(username="eng-2", password="pass1234", role=User.Role.SITE_ENGINEER)
        self.officer = User.objects.create_user(username="officer", password="pass1234", role=User.Role.PURCHASE_OFFICER)
        self.manager = User.objects.create_user(username="manager", password="pass1234", role=User.Role.MANAGER)

        self.site = Site.objects.create(name="Plant 1", code="P1")
        self.engineer.assigned_sites.add(self.site)
        self.other_engineer.assigned_sites.add(self.site)

        self.vendor_a = Vendor.objects.create(company_name="Vendor A", gst_number="27AAPFU0939F1ZV")
        self.vendor_b = Vendor.objects.create(company_name="Vendor B", gst_number="24AAACC1206D1ZM")
        self.vendor_c = Vendor.objects.create(company_name="Vendor C")

    def as_user(self, user):
        self.client.force_authenticate(user=user)
        return self.client

    def raise_request(self, quantity="10", unit="bags", item_name="Cement", submit=True):
        response = self.as_user(self.engineer).post(
            "/api/v1/requests/",
            {
                "site": str(self.site.id),
                "items": [{"item_name": item_name, "quantity": quantity, "unit": unit}],
                "submit": submit,
            },
            format="json",
        )
        self.assertEqual(response.status_code, 201, response.content)
        return PurchaseRequest.objects.get(id=response.json()["items"][0]["id"])

    def approved_request(self, **kwargs):
        purchase_request = self.raise_request(**kwargs)
        response = self.as_user(self.manager).post(f"/api/v1/requests/{purchase_request.id}/review/", {"approve": True}, format="json")
        self.assertEqual(response.status_code, 200, response.content)
        purchase_request.refresh_from_db()
        return purchase_request

    def open_comparison(self, purchase_request):
        response = self.as_user(self.officer).post("/api/v1/cost-comparisons/", {"request": str(purchase_request.id)}, format="json")
        self.assertIn(response.status_code, (200, 201), response.content)
        return response.json()["id"]

    def add_quote(self, comparison_id, vendor, **fields):
        payload = {"vendor": str(vendor.id), **fields}
        return self.as_user(self.officer).post(f"/api/v1/cost-comparisons/{comparison_id}/quotes/", payload, format="json")

    def submitted_comparison(self, purchase_request):
        comparison_id = self.open_comparison(purchase_request)
        self.assertEqual(self.add_quote(comparison_id, self.vendor_a, unit_price="100", gst_percent="18").status_code, 200)
        self.assertEqual(
            self.add_quote(comparison_id, self.vendor_b, unit_price="90", discount_percent="5", gst_percent="18").status_code,
            200,
        )
        response = self.as_user(self.officer).post(f"/api/v1/cost-comparisons/{comparison_id}/submit/", {}, format="json")
        self.assertEqual(response.status_code, 200, response.content)
        return comparison_id

    def direct_po(self, **item_overrides):
        item = {"item_description": "Copper lugs", "quantity": "1", "unit": "box", "unit_rate": "12345.67", "gst_tax_rate": "0"}
        item.update(item_overrides)
        response = self.as_user(self.officer).post(
            "/api/v1/purchase-orders/direct/",
            {"vendor": str(self.vendor_a.id), "site": str(self.site.id), "items": [item]},
            format="json",
        )
        self.assertEqual(response.status_code, 201, response.content)
        return PurchaseOrder.objects.get(id=response.json()["id"])


class PurchaseRequestTests(ProcurementFixtureMixin, TestCase):
    def test_request_group_shares_number_and_orders_items(self):
        response = self.as_user(self.engineer).post(
            "/api/v1/requests/",
            {
                "site": str(self.site.id),
                "items": [
                    {"item_name": "Cement", "quantity": "10", "unit": "bags"},
                    {"item_name": "Rebar", "quantity": "2", "unit": "t"},
                ],
            },
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        payload = response.json()
        self.assertEqual(payload["request_number"], "001")
        self.assertEqual([item["item_order"] for item in payload["items"]], [1, 2])
        self.assertEqual({item["status"] for item in payload["items"]}, {"draft"})

        second = self.raise_request()
        self.assertEqual(second.request_number, "002")

    def test_request_numbers_continue_from_existing_numbers(self):
        PurchaseRequest.objects.create(
            request_number="007", site=self.site, created_by=self.engineer, item_name="Legacy", quantity=Decimal("1"), unit="nos"
        )

        first = self.raise_request()
        second = self.raise_request()

        self.assertEqual([first.request_number, second.request_number], ["008", "009"])
        self.assertEqual(DocumentSequence.objects.get(key="purchase_request").last_value, 9)

    def test_engineer_must_be_assigned_to_site(self):
        other_site = Site.objects.create(name="Plant 2")
        response = self.as_user(self.engineer).post(
            "/api/v1/requests/",
            {"site": str(other_site.id), "items": [{"item_name": "Cement", "quantity": "1", "unit": "bags"}]},
            format="json",
        )

        self.assertEqual(response.status_code, 403)

    def test_zero_quantity_is_rejected(self):
        response = self.as_user(self.engineer).post(
            "/api/v1/requests/",
            {"site": str(self.site.id), "items": [{"item_name": "Cement", "quantity": "0", "unit": "bags"}]},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertFalse(PurchaseRequest.objects.exists())

    def test_submit_moves_whole_group_to_pending_and_notifies_managers(self):
        draft = self.raise_request(submit=False)

        response = self.as_user(self.engineer).post(f"/api/v1/requests/{draft.id}/submit/", {}, format="json")

        self.assertEqual(response.status_code, 200)
        draft.refresh_from_db()
        self.assertEqual(draft.status, PurchaseRequest.Status.PENDING)
        self.assertTrue(Notification.objects.filter(user=self.manager, entity_id=draft.id).exists())

    def test_reject_requires_reason_and_writes_log_note(self):
        purchase_request = self.raise_request()

        response = self.as_user(self.manager).post(f"/api/v1/requests/{purchase_request.id}/review/", {"approve": False}, format="json")
        self.assertEqual(response.status_code, 400)

        response = self.as_user(self.manager).post(
            f"/api/v1/requests/{purchase_request.id}/review/",
            {"approve": False, "reason": "Duplicate of #000"},
            format="json",
        )
        self.assertEqual(response.status_code, 200)
        purchase_request.refresh_from_db()
        self.assertEqual(purchase_request.status, PurchaseRequest.Status.REJECTED)
        self.assertEqual(purchase_request.rejection_reason, "Duplicate of #000")
        self.assertTrue(
            RequestNote.objects.filter(request_number=purchase_request.request_number, type=RequestNote.Type.LOG).exists()
        )

    def test_approving_twice_is_an_invalid_transition(self):
        purchase_request = self.approved_request()

        response = self.as_user(self.manager).post(f"/api/v1/requests/{purchase_request.id}/review/", {"approve": True}, format="json")

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["code"], "invalid_transition")

    def test_engineer_can_withdraw_only_before_approval(self):
        purchase_request = self.approved_request()

        response = self.as_user(self.engineer).post(f"/api/v1/requests/{purchase_request.id}/cancel/", {}, format="json")
        self.assertEqual(response.status_code, 409)

        response = self.as_user(self.manager).post(f"/api/v1/requests/{purchase_request.id}/cancel/", {"reason": "No longer needed"}, format="json")
        self.assertEqual(response.status_code, 200)
        purchase_request.refresh_from_db()
        self.assertEqual(purchase_request.status, PurchaseRequest.Status.CANCELLED)

    def test_engineers_only_see_their_own_requests(self):
        mine = self.raise_request()

        response = self.as_user(self.other_engineer).get("/api/v1/requests/")

        self.assertEqual(response.status_code, 200)
        self.assertNotIn(str(mine.id), {item["id"] for item in response.json()["results"]})

    def test_officer_cannot_review_requests(self):
        purchase_request = self.raise_request()

        response = self.as_user(self.officer).post(f"/api/v1/requests/{purchase_request.id}/review/", {"approve": True}, format="json")

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["code"], "permission_denied")

    def test_officer_corrects_details_without_touching_quotes(self):
        purchase_request = self.approved_request()
        comparison_id = self.submitted_comparison(purchase_request)

        response = self.as_user(self.officer).post(
            f"/api/v1/requests/{purchase_request.id}/update-details/",
            {"quantity": "12", "unit": "bags"},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        purchase_request.refresh_from_db()
        self.assertEqual(purchase_request.quantity, Decimal("12"))
        self.assertEqual(purchase_request.status, PurchaseRequest.Status.CC_PENDING)
        self.assertEqual(VendorQuote.objects.filter(comparison_id=comparison_id).count(), 2)

    def test_details_are_locked_once_ready_for_po(self):
        purchase_request = self.approved_request()
        self.as_user(self.officer).post(f"/api/v1/requests/{purchase_request.id}/direct-to-po/", {}, format="json")

        response = self.as_user(self.officer).post(
            f"/api/v1/requests/{purchase_request.id}/update-details/",
            {"quantity": "12"},
            format="json",
        )

        self.assertEqual(response.status_code, 400)

    def test_timeline_accepts_manual_notes(self):
        purchase_request = self.raise_request()

        response = self.as_user(self.manager).post(
            "/api/v1/request-notes/",
            {"request_number": purchase_request.request_number, "content": "Check with stores first."},
            format="json",
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["role"], "manager")

        response = self.as_user(self.engineer).get(f"/api/v1/request-notes/?request_number={purchase_request.request_number}")
        self.assertEqual(response.status_code, 200)
        self.assertEqual([note["content"] for note in response.json()], ["Check with stores first."])


class CostComparisonTests(ProcurementFixtureMixin, TestCase):
    def test_opening_comparison_moves_request_to_ready_for_cc(self):
        purchase_request = self.approved_request()

        self.open_comparison(purchase_request)

        purchase_request.refresh_from_db()
        self.assertEqual(purchase_request.status, PurchaseRequest.Status.READY_FOR_CC)

    def test_quote_price_is_normalised_per_unit(self):
        purchase_request = self.approved_request()
        comparison_id = self.open_comparison(purchase_request)

        response = self.add_quote(comparison_id, self.vendor_a, unit_price="2500", per_unit_basis="50")

        self.assertEqual(response.status_code, 200)
        quote = VendorQuote.objects.get(comparison_id=comparison_id, vendor=self.vendor_a)
        self.assertEqual(quote.unit_price, Decimal("50"))
        self.assertEqual(quote.quoted_price, Decimal("2500"))

    def test_quote_is_upserted_per_vendor(self):
        purchase_request = self.approved_request()
        comparison_id = self.open_comparison(purchase_request)

        self.add_quote(comparison_id, self.vendor_a, unit_price="100")
        self.add_quote(comparison_id, self.vendor_a, unit_price="95")

        quotes = VendorQuote.objects.filter(comparison_id=comparison_id)
        self.assertEqual(quotes.count(), 1)
        self.assertEqual(quotes.get().unit_price, Decimal("95"))

    def test_quote_rejects_bad_values_and_inactive_vendors(self):
        purchase_request = self.approved_request()
        comparison_id = self.open_comparison(purchase_request)
        self.vendor_c.is_active = False
        self.vendor_c.save()

        self.assertEqual(self.add_quote(comparison_id, self.vendor_a, unit_price="-1").status_code, 400)
        self.assertEqual(self.add_quote(comparison_id, self.vendor_a, unit_price="10", gst_percent="120").status_code, 400)
        self.assertEqual(self.add_quote(comparison_id, self.vendor_a, unit_price="10", per_unit_basis="0").status_code, 400)
        self.assertEqual(self.add_quote(comparison_id, self.vendor_c, unit_price="10").status_code, 400)
        self.assertFalse(VendorQuote.objects.exists())

    def test_quote_percentages_are_bounded_inclusively(self):
        serializer = QuoteInputSerializer(data={"vendor": str(self.vendor_a.id), "unit_price": "10", "gst_percent": "100.01"})
        self.assertFalse(serializer.is_valid())
        self.assertEqual(serializer.errors["gst_percent"][0].code, "max_value")

        serializer = QuoteInputSerializer(
            data={"vendor": str(self.vendor_a.id), "unit_price": "0", "gst_percent": "100", "discount_percent": "0"}
        )
        self.assertTrue(serializer.is_valid(), serializer.errors)
        self.assertEqual(serializer.validated_data["gst_percent"], Decimal("100"))

    def test_submit_requires_a_quote(self):
        purchase_request = self.approved_request()
        comparison_id = self.open_comparison(purchase_request)

        response = self.as_user(self.officer).post(f"/api/v1/cost-comparisons/{comparison_id}/submit/", {}, format="json")

        self.assertEqual(response.status_code, 400)

    @override_settings(PROCUREMENT_MIN_COMPARISON_QUOTES=3)
    def test_minimum_quote_count_is_configurable(self):
        purchase_request = self.approved_request()
        comparison_id = self.open_comparison(purchase_request)
        self.add_quote(comparison_id, self.vendor_a, unit_price="100")
        self.add_quote(comparison_id, self.vendor_b, unit_price="90")

        response = self.as_user(self.officer).post(f"/api/v1/cost-comparisons/{comparison_id}/submit/", {}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["message"], "Add at least 3 vendor quote(s) before submitting.")

    def test_detail_serves_ranking_with_best_price(self):
        purchase_request = self.approved_request()
        comparison_id = self.submitted_comparison(purchase_request)

        response = self.as_user(self.manager).get(f"/api/v1/cost-comparisons/{comparison_id}/")

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["best_vendor"], str(self.vendor_b.id))
        self.assertEqual([Decimal(row["total"]) for row in payload["ranking"]], [Decimal("1180.00"), Decimal("1008.90")])

    def test_manager_queue_lists_pending_comparisons(self):
        purchase_request = self.approved_request()
        comparison_id = self.submitted_comparison(purchase_request)

        response = self.as_user(self.manager).get("/api/v1/cost-comparisons/pending/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual([row["id"] for row in response.json()["results"]], [comparison_id])

    def test_approving_with_unquoted_vendor_fails(self):
        purchase_request = self.approved_request()
        comparison_id = self.submitted_comparison(purchase_request)

        response = self.as_user(self.manager).post(
            f"/api/v1/cost-comparisons/{comparison_id}/review/",
            {"approve": True, "selected_vendor": str(self.vendor_c.id)},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        comparison = CostComparison.objects.get(id=comparison_id)
        self.assertEqual(comparison.status, CostComparison.Status.CC_PENDING)
        self.assertIsNone(comparison.selected_vendor_id)

    def test_approving_with_quoted_vendor_persists_selection(self):
        purchase_request = self.approved_request()
        comparison_id = self.submitted_comparison(purchase_request)

        response = self.as_user(self.manager).post(
            f"/api/v1/cost-comparisons/{comparison_id}/review/",
            {"approve": True, "selected_vendor": str(self.vendor_b.id)},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        comparison = CostComparison.objects.get(id=comparison_id)
        self.assertEqual(comparison.status, CostComparison.Status.CC_APPROVED)
        self.assertEqual(comparison.selected_vendor_id, self.vendor_b.id)
        self.assertEqual(comparison.approved_by_id, self.manager.id)
        purchase_request.refresh_from_db()
        self.assertEqual(purchase_request.status, PurchaseRequest.Status.READY_FOR_PO)
        self.assertTrue(Notification.objects.filter(user=self.officer, entity_id=comparison.id).exists())

    def test_rejecting_without_notes_fails(self):
        purchase_request = self.approved_request()
        comparison_id = self.submitted_comparison(purchase_request)

        for notes in ("", "   "):
            response = self.as_user(self.manager).post(
                f"/api/v1/cost-comparisons/{comparison_id}/review/",
                {"approve": False, "notes": notes},
                format="json",
            )
            self.assertEqual(response.status_code, 400)

        self.assertEqual(CostComparison.objects.get(id=comparison_id).status, CostComparison.Status.CC_PENDING)

    def test_rejection_and_resubmission_cycle(self):
        purchase_request = self.approved_request()
        comparison_id = self.submitted_comparison(purchase_request)

        response = self.as_user(self.manager).post(
            f"/api/v1/cost-comparisons/{comparison_id}/review/",
            {"approve": False, "notes": "Get a third quote"},
            format="json",
        )
        self.assertEqual(response.status_code, 200)
        purchase_request.refresh_from_db()
        self.assertEqual(purchase_request.status, PurchaseRequest.Status.READY_FOR_CC)

        response = self.as_user(self.officer).post(f"/api/v1/cost-comparisons/{comparison_id}/submit/", {}, format="json")
        self.assertEqual(response.status_code, 409)

        response = self.as_user(self.officer).post(
            f"/api/v1/cost-comparisons/{comparison_id}/resubmit/",
            {
                "quotes": [
                    {"vendor": str(self.vendor_a.id), "unit_price": "100"},
                    {"vendor": str(self.vendor_c.id), "unit_price": "80"},
                ]
            },
            format="json",
        )
        self.assertEqual(response.status_code, 200, response.content)
        comparison = CostComparison.objects.get(id=comparison_id)
        self.assertEqual(comparison.status, CostComparison.Status.CC_PENDING)
        self.assertEqual(
            list(comparison.quotes.values_list("vendor__company_name", flat=True)),
            ["Vendor A", "Vendor C"],
        )
        purchase_request.refresh_from_db()
        self.assertEqual(purchase_request.status, PurchaseRequest.Status.CC_PENDING)

    def test_full_inventory_fulfilment_skips_quotes(self):
        InventoryItem.objects.create(item_name="Cement", unit="bags", central_stock=Decimal("50"))
        purchase_request = self.approved_request(quantity="30")
        comparison_id = self.open_comparison(purchase_request)

        response = self.as_user(self.officer).post(
            f"/api/v1/cost-comparisons/{comparison_id}/fulfilment/",
            {"inventory_quantity": "30"},
            format="json",
        )

        self.assertEqual(response.status_code, 200, response.content)
        self.assertEqual(InventoryItem.objects.get(item_name="Cement").central_stock, Decimal("20"))
        purchase_request.refresh_from_db()
        self.assertEqual(purchase_request.status, PurchaseRequest.Status.READY_FOR_DELIVERY)
        comparison = CostComparison.objects.get(id=comparison_id)
        self.assertTrue(comparison.is_direct_delivery)
        self.assertFalse(comparison.quotes.exists())

    def test_partial_fulfilment_must_cover_shortfall(self):
        InventoryItem.objects.create(item_name="Cement", unit="bags", central_stock=Decimal("50"))
        purchase_request = self.approved_request(quantity="80")
        comparison_id = self.open_comparison(purchase_request)

        response = self.as_user(self.officer).post(
            f"/api/v1/cost-comparisons/{comparison_id}/fulfilment/",
            {"inventory_quantity": "50", "purchase_quantity": "20"},
            format="json",
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(InventoryItem.objects.get(item_name="Cement").central_stock, Decimal("50"))

        response = self.as_user(self.officer).post(
            f"/api/v1/cost-comparisons/{comparison_id}/fulfilment/",
            {"inventory_quantity": "50", "purchase_quantity": "40"},
            format="json",
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(Decimal(response.json()["comparison_quantity"]), Decimal("40"))
        self.assertEqual(InventoryItem.objects.get(item_name="Cement").central_stock, Decimal("0"))
        purchase_request.refresh_from_db()
        self.assertEqual(purchase_request.status, PurchaseRequest.Status.READY_FOR_CC)

    def test_fulfilment_beyond_stock_changes_nothing(self):
        InventoryItem.objects.create(item_name="Cement", unit="bags", central_stock=Decimal("5"))
        purchase_request = self.approved_request(quantity="10")
        comparison_id = self.open_comparison(purchase_request)

        response = self.as_user(self.officer).post(
            f"/api/v1/cost-comparisons/{comparison_id}/fulfilment/",
            {"inventory_quantity": "10"},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(InventoryItem.objects.get(item_name="Cement").central_stock, Decimal("5"))
        comparison = CostComparison.objects.get(id=comparison_id)
        self.assertIsNone(comparison.inventory_fulfillment_quantity)
        self.assertFalse(comparison.is_direct_delivery)

    def test_site_engineer_cannot_see_comparisons(self):
        response = self.as_user(self.engineer).get("/api/v1/cost-comparisons/")

        self.assertEqual(response.status_code, 403)


class PurchaseOrderTests(ProcurementFixtureMixin, TestCase):
    def approve_comparison(self, purchase_request, vendor):
        comparison_id = self.submitted_comparison(purchase_request)
        response = self.as_user(self.manager).post(
            f"/api/v1/cost-comparisons/{comparison_id}/review/",
            {"approve": True, "selected_vendor": str(vendor.id)},
            format="json",
        )
        self.assertEqual(response.status_code, 200)

    def direct_po_for(self, *purchase_requests):
        items = [{"request": str(purchase_request.id), "quantity": "1", "unit_rate": "10"} for purchase_request in purchase_requests]
        return self.as_user(self.officer).post(
            "/api/v1/purchase-orders/direct/",
            {"vendor": str(self.vendor_a.id), "site": str(self.site.id), "items": items},
            format="json",
        )

    def ready_for_po_request(self, **kwargs):
        purchase_request = self.approved_request(**kwargs)
        response = self.as_user(self.officer).post(f"/api/v1/requests/{purchase_request.id}/direct-to-po/", {}, format="json")
        self.assertEqual(response.status_code, 200, response.content)
        purchase_request.refresh_from_db()
        return purchase_request

    def test_standard_po_uses_selected_vendor_quote(self):
        purchase_request = self.approved_request(quantity="10", unit="bags")
        self.approve_comparison(purchase_request, self.vendor_b)

        response = self.as_user(self.officer).post(
            "/api/v1/purchase-orders/",
            {"requests": [str(purchase_request.id)]},
            format="json",
        )

        self.assertEqual(response.status_code, 201, response.content)
        payload = response.json()
        self.assertEqual(payload["status"], "ordered")
        self.assertEqual(payload["vendor"], str(self.vendor_b.id))
        self.assertFalse(payload["is_direct"])
        self.assertRegex(payload["po_number"], r"^PO-\d{6}-0001$")
        line = payload["lines"][0]
        self.assertEqual(Decimal(line["unit_rate"]), Decimal("90"))
        self.assertEqual(Decimal(line["discount_percent"]), Decimal("5"))
        self.assertEqual(Decimal(line["gst_tax_rate"]), Decimal("18"))
        self.assertEqual(Decimal(payload["total_amount"]), Decimal("1008.90"))
        self.assertEqual(payload["approved_by"], str(self.manager.id))
        purchase_request.refresh_from_db()
        self.assertEqual(purchase_request.status, PurchaseRequest.Status.DELIVERY_STAGE)

    def test_standard_po_requires_approved_comparison(self):
        purchase_request = self.approved_request()

        response = self.as_user(self.officer).post(
            "/api/v1/purchase-orders/",
            {"requests": [str(purchase_request.id)]},
            format="json",
        )

        self.assertEqual(response.status_code, 409)
        self.assertFalse(PurchaseOrder.objects.exists())

    def test_standard_po_rejects_mixed_vendors(self):
        first = self.approved_request(item_name="Cement")
        second = self.approved_request(item_name="Sand")
        self.approve_comparison(first, self.vendor_a)
        self.approve_comparison(second, self.vendor_b)

        response = self.as_user(self.officer).post(
            "/api/v1/purchase-orders/",
            {"requests": [str(first.id), str(second.id)]},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertFalse(PurchaseOrder.objects.exists())

    def test_direct_po_awaits_approval_and_notifies_managers(self):
        purchase_order = self.direct_po()

        self.assertEqual(purchase_order.status, PurchaseOrder.Status.PENDING_APPROVAL)
        self.assertTrue(purchase_order.is_direct)
        self.assertEqual(purchase_order.total_amount, Decimal("12345.67"))
        self.assertTrue(Notification.objects.filter(user=self.manager, entity_id=purchase_order.id).exists())

    def test_direct_po_validates_lines(self):
        for overrides in ({"quantity": "0"}, {"unit_rate": "0"}, {"gst_tax_rate": "101"}, {"discount_percent": "-1"}):
            item = {"item_description": "Lugs", "quantity": "1", "unit": "nos", "unit_rate": "10", **overrides}
            response = self.as_user(self.officer).post(
                "/api/v1/purchase-orders/direct/",
                {"vendor": str(self.vendor_a.id), "site": str(self.site.id), "items": [item]},
                format="json",
            )
            self.assertEqual(response.status_code, 400, overrides)
        self.assertFalse(PurchaseOrder.objects.exists())

    def test_reject_then_resubmit_creates_a_new_po(self):
        rejected = self.direct_po()

        response = self.as_user(self.manager).post(f"/api/v1/purchase-orders/{rejected.id}/reject/", {}, format="json")
        self.assertEqual(response.status_code, 400)

        response = self.as_user(self.manager).post(
            f"/api/v1/purchase-orders/{rejected.id}/reject/",
            {"reason": "budget exceeded"},
            format="json",
        )
        self.assertEqual(response.status_code, 200)
        rejected.refresh_from_db()
        self.assertEqual(rejected.status, PurchaseOrder.Status.REJECTED)
        self.assertEqual(rejected.rejection_reason, "budget exceeded")

        response = self.as_user(self.officer).post(f"/api/v1/purchase-orders/{rejected.id}/resubmit/", {}, format="json")
        self.assertEqual(response.status_code, 201)
        replacement = PurchaseOrder.objects.get(id=response.json()["id"])
        self.assertNotEqual(replacement.id, rejected.id)
        self.assertNotEqual(replacement.po_number, rejected.po_number)
        self.assertEqual(replacement.status, PurchaseOrder.Status.PENDING_APPROVAL)
        self.assertEqual(replacement.vendor_id, rejected.vendor_id)
        self.assertEqual(replacement.total_amount, rejected.total_amount)
        rejected.refresh_from_db()
        self.assertEqual(rejected.status, PurchaseOrder.Status.REJECTED)

    def test_approve_records_approver(self):
        purchase_order = self.direct_po()

        response = self.as_user(self.manager).post(f"/api/v1/purchase-orders/{purchase_order.id}/approve/", {}, format="json")

        self.assertEqual(response.status_code, 200)
        purchase_order.refresh_from_db()
        self.assertEqual(purchase_order.status, PurchaseOrder.Status.ORDERED)
        self.assertEqual(purchase_order.approved_by_id, self.manager.id)
        self.assertIsNotNone(purchase_order.approved_at)

    def test_officer_cannot_approve_po(self):
        purchase_order = self.direct_po()

        response = self.as_user(self.officer).post(f"/api/v1/purchase-orders/{purchase_order.id}/approve/", {}, format="json")

        self.assertEqual(response.status_code, 403)

    def test_delivering_twice_is_rejected_and_keeps_first_date(self):
        purchase_order = self.direct_po()
        self.as_user(self.manager).post(f"/api/v1/purchase-orders/{purchase_order.id}/approve/", {}, format="json")

        response = self.as_user(self.officer).post(f"/api/v1/purchase-orders/{purchase_order.id}/deliver/", {}, format="json")
        self.assertEqual(response.status_code, 200)
        purchase_order.refresh_from_db()
        delivered_at = purchase_order.actual_delivery_date
        self.assertIsNotNone(delivered_at)

        response = self.as_user(self.officer).post(f"/api/v1/purchase-orders/{purchase_order.id}/deliver/", {}, format="json")
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["code"], "invalid_transition")
        purchase_order.refresh_from_db()
        self.assertEqual(purchase_order.actual_delivery_date, delivered_at)

    def test_pending_po_cannot_be_delivered(self):
        purchase_order = self.direct_po()

        with self.assertRaises(InvalidTransition):
            services.mark_po_delivered(actor=self.officer, purchase_order=purchase_order)

    def test_cancel_returns_requests_to_ready_for_po(self):
        purchase_request = self.approved_request()
        self.approve_comparison(purchase_request, self.vendor_a)
        response = self.as_user(self.officer).post("/api/v1/purchase-orders/", {"requests": [str(purchase_request.id)]}, format="json")
        po_id = response.json()["id"]

        response = self.as_user(self.officer).post(f"/api/v1/purchase-orders/{po_id}/cancel/", {"reason": "Vendor backed out"}, format="json")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "cancelled")
        purchase_request.refresh_from_db()
        self.assertEqual(purchase_request.status, PurchaseRequest.Status.READY_FOR_PO)

        response = self.as_user(self.officer).post(f"/api/v1/purchase-orders/{po_id}/deliver/", {}, format="json")
        self.assertEqual(response.status_code, 409)

    def test_engineer_confirms_delivery_of_po_items(self):
        purchase_request = self.approved_request()
        self.approve_comparison(purchase_request, self.vendor_a)
        self.as_user(self.officer).post("/api/v1/purchase-orders/", {"requests": [str(purchase_request.id)]}, format="json")

        response = self.as_user(self.other_engineer).post(f"/api/v1/requests/{purchase_request.id}/confirm-delivery/", {}, format="json")
        self.assertEqual(response.status_code, 404)

        response = self.as_user(self.engineer).post(f"/api/v1/requests/{purchase_request.id}/confirm-delivery/", {}, format="json")
        self.assertEqual(response.status_code, 200)
        purchase_request.refresh_from_db()
        self.assertEqual(purchase_request.status, PurchaseRequest.Status.DELIVERED)
        self.assertIsNotNone(purchase_request.delivered_at)

    def test_list_filters_direct_pos(self):
        direct = self.direct_po()

        response = self.as_user(self.manager).get("/api/v1/purchase-orders/?is_direct=true")
        self.assertEqual([row["id"] for row in response.json()["results"]], [str(direct.id)])

        response = self.as_user(self.manager).get("/api/v1/purchase-orders/?is_direct=false")
        self.assertEqual(response.json()["results"], [])

        response = self.as_user(self.manager).get(f"/api/v1/purchase-orders/?po_number={direct.po_number}")
        self.assertEqual(response.json()["count"], 1)

    def test_document_totals_and_words(self):
        purchase_order = self.direct_po()
        self.manager.signature_url = "https://cdn.example.com/signatures/manager.png"
        self.manager.save()
        self.as_user(self.manager).post(f"/api/v1/purchase-orders/{purchase_order.id}/approve/", {}, format="json")

        response = self.as_user(self.officer).get(f"/api/v1/purchase-orders/{purchase_order.id}/document/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["totals"]["grand_total"], Decimal("12346"))
        self.assertEqual(response.data["totals"]["round_off"], Decimal("0.33"))
        self.assertEqual(response.data["amount_in_words"], "Rupees Twelve thousand three hundred and forty six Only")
        self.assertEqual(response.data["vendor"]["company_name"], "Vendor A")
        self.assertEqual(response.data["approved_by"]["signature_url"], "https://cdn.example.com/signatures/manager.png")

    def test_request_sent_direct_to_po_is_ordered_and_delivered(self):
        purchase_request = self.ready_for_po_request(quantity="10", unit="bags")

        purchase_order = self.direct_po(request=str(purchase_request.id), item_description="", unit="", quantity="10", unit_rate="100")

        line = purchase_order.lines.get()
        self.assertEqual((line.request_id, line.item_description, line.unit), (purchase_request.id, "Cement", "bags"))
        purchase_request.refresh_from_db()
        self.assertEqual(purchase_request.status, PurchaseRequest.Status.READY_FOR_PO)

        response = self.as_user(self.manager).post(f"/api/v1/purchase-orders/{purchase_order.id}/approve/", {}, format="json")
        self.assertEqual(response.status_code, 200, response.content)
        purchase_request.refresh_from_db()
        self.assertEqual(purchase_request.status, PurchaseRequest.Status.DELIVERY_STAGE)

        response = self.as_user(self.officer).post(f"/api/v1/purchase-orders/{purchase_order.id}/deliver/", {}, format="json")
        self.assertEqual(response.status_code, 200, response.content)
        response = self.as_user(self.engineer).post(f"/api/v1/requests/{purchase_request.id}/confirm-delivery/", {}, format="json")
        self.assertEqual(response.status_code, 200, response.content)
        purchase_request.refresh_from_db()
        self.assertEqual(purchase_request.status, PurchaseRequest.Status.DELIVERED)
        self.assertTrue(
            RequestNote.objects.filter(request_number=purchase_request.request_number, content__contains=purchase_order.po_number).exists()
        )

    def test_direct_po_request_links_are_validated(self):
        ready = self.ready_for_po_request(item_name="Cement")
        approved = self.approved_request(item_name="Sand")
        elsewhere = PurchaseRequest.objects.create(
            request_number="900",
            site=Site.objects.create(name="Plant 2", code="P2"),
            created_by=self.engineer,
            item_name="Gravel",
            quantity=Decimal("5"),
            unit="t",
            status=PurchaseRequest.Status.READY_FOR_PO,
        )

        self.assertEqual(self.direct_po_for(ready, ready).status_code, 400)
        self.assertEqual(self.direct_po_for(elsewhere).status_code, 400)
        response = self.direct_po_for(approved)
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["code"], "invalid_transition")
        self.assertFalse(PurchaseOrder.objects.exists())

    def test_linked_request_stays_on_one_open_po(self):
        purchase_request = self.ready_for_po_request()
        first = self.direct_po(request=str(purchase_request.id))

        self.assertEqual(self.direct_po_for(purchase_request).status_code, 400)
        response = self.as_user(self.officer).post("/api/v1/purchase-orders/", {"requests": [str(purchase_request.id)]}, format="json")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(PurchaseOrder.objects.count(), 1)

        services.reject_po(actor=self.manager, purchase_order=first, reason="rate too high")
        purchase_request.refresh_from_db()
        self.assertEqual(purchase_request.status, PurchaseRequest.Status.READY_FOR_PO)

        replacement = services.resubmit_po(actor=self.officer, purchase_order=first)
        self.assertEqual(replacement.lines.get().request_id, purchase_request.id)
        services.approve_po(actor=self.manager, purchase_order=replacement)
        purchase_request.refresh_from_db()
        self.assertEqual(purchase_request.status, PurchaseRequest.Status.DELIVERY_STAGE)

    def test_po_numbers_continue_from_existing_serials(self):
        prefix = timezone.now().strftime("PO-%Y%m-")
        PurchaseOrder.objects.create(po_number=f"{prefix}0041", vendor=self.vendor_a, site=self.site, created_by=self.officer)

        first = self.direct_po()
        second = self.direct_po()

        self.assertEqual([first.po_number, second.po_number], [f"{prefix}0042", f"{prefix}0043"])
        self.assertEqual(DocumentSequence.objects.get(key=f"purchase_order:{prefix}").last_value, 43)

    def test_delivered_po_cannot_be_cancelled(self):
        purchase_order = self.direct_po()
        services.approve_po(actor=self.manager, purchase_order=purchase_order)
        services.mark_po_delivered(actor=self.officer, purchase_order=purchase_order)

        response = self.as_user(self.officer).post(f"/api/v1/purchase-orders/{purchase_order.id}/cancel/", {"reason": "late"}, format="json")

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["code"], "invalid_transition")
        purchase_order.refresh_from_db()
        self.assertEqual(purchase_order.status, PurchaseOrder.Status.DELIVERED)
        self.assertIsNone(purchase_order.cancelled_at)

    def test_site_engineer_cannot_list_pos(self):
        response = self.as_user(self.engineer).get("/api/v1/purchase-orders/")

        self.assertEqual(response.status_code, 403)


class WorkflowTests(ProcurementFixtureMixin, TestCase):
    def test_terminal_states_have_no_exits(self):
        purchase_request = self.raise_request()
        purchase_request.status = PurchaseRequest.Status.DELIVERED

        for target in PurchaseRequest.Status.values:
            self.assertFalse(can_transition(purchase_request, target))

    def test_transition_rejects_skipping_approval(self):
        purchase_request = self.raise_request(submit=False)

        with self.assertRaises(InvalidTransition):
            transition(purchase_request, PurchaseRequest.Status.READY_FOR_PO, actor=self.manager)

        purchase_request.refresh_from_db()
        self.assertEqual(purchase_request.status, PurchaseRequest.Status.DRAFT)


class EndToEndScenarioTests(ProcurementFixtureMixin, TestCase):
    def test_scenario_quotes_to_ordered_po(self):
        purchase_request = self.approved_request(quantity="10", unit="bags")
        comparison_id = self.submitted_comparison(purchase_request)
        self.as_user(self.manager).post(
            f"/api/v1/cost-comparisons/{comparison_id}/review/",
            {"approve": True, "selected_vendor": str(self.vendor_b.id)},
            format="json",
        )

        response = self.as_user(self.officer).post("/api/v1/purchase-orders/", {"requests": [str(purchase_request.id)]}, format="json")

        self.assertEqual(response.status_code, 201)
        purchase_order = PurchaseOrder.objects.get(id=response.json()["id"])
        self.assertEqual(purchase_order.status, PurchaseOrder.Status.ORDERED)
        self.assertEqual(purchase_order.lines.get().unit_rate, VendorQuote.objects.get(vendor=self.vendor_b).unit_price)

    def test_scenario_direct_po_rejected_and_resubmitted(self):
        purchase_order = self.direct_po()
        services.reject_po(actor=self.manager, purchase_order=purchase_order, reason="budget exceeded")

        replacement = services.resubmit_po(actor=self.officer, purchase_order=purchase_order)

        self.assertEqual(PurchaseOrder.objects.count(), 2)
        self.assertEqual(replacement.status, PurchaseOrder.Status.PENDING_APPROVAL)
        purchase_order.refresh_from_db()
        self.assertEqual(purchase_order.status, PurchaseOrder.Status.REJECTED)
        self.assertEqual(purchase_order.rejection_reason, "budget exceeded")

    def test_scenario_full_stock_fulfilment(self):
        item = InventoryItem.objects.create(item_name="Cement", unit="bags", central_stock=Decimal("50"))
        purchase_request = self.approved_request(quantity="30")

        services.plan_fulfilment(actor=self.officer, purchase_request=purchase_request, inventory_quantity=Decimal("30"))

        item.refresh_from_db()
        self.assertEqual(item.central_stock, Decimal("20"))
        purchase_request.refresh_from_db()
        self.assertEqual(purchase_request.status, PurchaseRequest.Status.READY_FOR_DELIVERY)
        self.assertFalse(VendorQuote.objects.exists())
