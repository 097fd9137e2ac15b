"""Purchase order document figures: GST split, tax groups, round-off and amount in words.

All arithmetic is Decimal. Values are kept unrounded while summing and only
quantised for presentation, so the round-off line reconciles exactly with the
printed grand total.
"""

from collections import OrderedDict
from decimal import Decimal, ROUND_HALF_UP

from num2words import num2words

TWO_PLACES = Decimal("0.01")
WHOLE_RUPEE = Decimal("1")
HUNDRED = Decimal("100")
ZERO = Decimal("0")


def _money(value):
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def compute_line(*, quantity, unit_rate, per_unit_basis=1, discount_percent=0, gst_tax_rate=0):
    """Unrounded taxable value and intra-state GST (CGST + SGST, half the rate each) for one line."""
    basis = Decimal(per_unit_basis or 1)
    base_value = Decimal(quantity) / basis * Decimal(unit_rate)
    taxable_value = base_value - base_value * Decimal(discount_percent or 0) / HUNDRED
    half_rate = Decimal(gst_tax_rate or 0) / 2
    cgst_amount = taxable_value * half_rate / HUNDRED
    sgst_amount = taxable_value * half_rate / HUNDRED
    return {
        "taxable_value": taxable_value,
        "cgst_rate": half_rate,
        "cgst_amount": cgst_amount,
        "sgst_rate": half_rate,
        "sgst_amount": sgst_amount,
        "item_total": taxable_value + cgst_amount + sgst_amount,
    }


def amount_in_words(amount):
    """Whole-rupee amount in the Indian numbering system, e.g. ``Rupees One lakh five thousand Only``."""
    rupees = int(Decimal(amount).quantize(WHOLE_RUPEE, rounding=ROUND_HALF_UP))
    words = num2words(rupees, lang="en_IN").replace(",", "").replace("-", " ")
    return f"Rupees {words[:1].upper()}{words[1:]} Only"


def build_po_document(items):
    """Compute the figures printed on a purchase order.

    ``items`` is an iterable of mappings with ``quantity``, ``unit_rate`` and
    optionally ``per_unit_basis``, ``discount_percent``, ``gst_tax_rate``,
    ``hsn_sac_code`` plus any display fields, which are passed through.
    """
    rows = []
    tax_groups = OrderedDict()
    total_taxable = total_cgst = total_sgst = raw_total = ZERO

    for index, item in enumerate(items, start=1):
        figures = compute_line(
            quantity=item["quantity"],
            unit_rate=item["unit_rate"],
            per_unit_basis=item.get("per_unit_basis") or 1,
            discount_percent=item.get("discount_percent") or 0,
            gst_tax_rate=item.get("gst_tax_rate") or 0,
        )
        total_taxable += figures["taxable_value"]
        total_cgst += figures["cgst_amount"]
        total_sgst += figures["sgst_amount"]
        raw_total += figures["item_total"]

        gst_rate = Decimal(item.get("gst_tax_rate") or 0)
        hsn = (item.get("hsn_sac_code") or "").strip() or "NA"
        group = tax_groups.setdefault(
            (hsn, gst_rate),
            {
                "hsn_sac_code": hsn,
                "gst_tax_rate": _money(gst_rate),
                "cgst_rate": _money(figures["cgst_rate"]),
                "sgst_rate": _money(figures["sgst_rate"]),
                "taxable_value": ZERO,
                "cgst_amount": ZERO,
                "sgst_amount": ZERO,
            },
        )
        group["taxable_value"] += figures["taxable_value"]
        group["cgst_amount"] += figures["cgst_amount"]
        group["sgst_amount"] += figures["sgst_amount"]

        rows.append(
            {
                **item,
                "serial": index,
                "taxable_value": _money(figures["taxable_value"]),
                "cgst_rate": _money(figures["cgst_rate"]),
                "cgst_amount": _money(figures["cgst_amount"]),
                "sgst_rate": _money(figures["sgst_rate"]),
                "sgst_amount": _money(figures["sgst_amount"]),
                "item_total": _money(figures["item_total"]),
            }
        )

    grand_total = raw_total.quantize(WHOLE_RUPEE, rounding=ROUND_HALF_UP)
    round_off = _money(grand_total - raw_total)

    return {
        "items": rows,
        "tax_groups": [
            {
                **group,
                "taxable_value": _money(group["taxable_value"]),
                "cgst_amount": _money(group["cgst_amount"]),
                "sgst_amount": _money(group["sgst_amount"]),
                "total_tax": _money(group["cgst_amount"] + group["sgst_amount"]),
            }
            for group in tax_groups.values()
        ],
        "totals": {
            "taxable_value": _money(total_taxable),
            "cgst_amount": _money(total_cgst),
            "sgst_amount": _money(total_sgst),
            "total_tax": _money(total_cgst + total_sgst),
            "raw_total": _money(raw_total),
            "round_off": round_off,
            "grand_total": grand_total,
        },
        "amount_in_words": amount_in_words(grand_total),
    }
