"""
Postage tiers: weight brackets mapped to a postage amount and carrier code.
"""

from dataclasses import dataclass

from .manifest import to_number
from .rounding import round2

ROYAL_MAIL_SHARE = 0.74
FUEL_SURCHARGE = 1.08
CARRIER_VAT = 1.2

POSTAGE_TABLE_HEADER = ['Weight (Max)', 'Postage (£)', 'Royal Mail Basic', 'Fuel', 'Vat', 'Diff', 'Code']


@dataclass(frozen=True)
class PostageTier:
    max_weight: float
    postage: float
    code: int


DEFAULT_POSTAGE_TABLE = (
    PostageTier(0, 1.9662, 2),
    PostageTier(2, 3.8136, 5),
    PostageTier(5, 4.156, 10),
    PostageTier(10, 3.656, 10),
)


def parse_postage_rates(rows) -> list[PostageTier]:
    """Rows of [max weight, postage, ..., code (7th column)]; first row is a header.

    Tiers without a positive postage amount are dropped; the result is sorted
    by weight threshold.
    """
    tiers = []
    for row in list(rows)[1:]:
        row = list(row or [])
        if not row:
            continue
        postage = to_number(row[1]) if len(row) > 1 else 0.0
        if postage <= 0:
            continue
        code = int(to_number(row[6])) if len(row) > 6 else 0
        tiers.append(PostageTier(to_number(row[0]), postage, code))
    tiers.sort(key=lambda t: t.max_weight)
    return tiers


def postage_for_weight(weight: float, tiers=None) -> PostageTier:
    """Last tier whose threshold is <= weight; the first tier below every threshold."""
    tiers = list(tiers or DEFAULT_POSTAGE_TABLE)
    selected = tiers[0]
    for tier in tiers:
        if weight >= tier.max_weight:
            selected = tier
        else:
            break
    return selected


def carrier_breakdown(tier: PostageTier) -> list:
    basic = round2(tier.postage / ROYAL_MAIL_SHARE)
    fuel = round2(basic * FUEL_SURCHARGE)
    vat = round2(fuel * CARRIER_VAT)
    diff = round2(vat - tier.postage)
    return [tier.max_weight, tier.postage, basic, fuel, vat, diff, tier.code]


def postage_table_rows(tiers=None) -> list[list]:
    return [list(POSTAGE_TABLE_HEADER)] + [carrier_breakdown(t) for t in (tiers or DEFAULT_POSTAGE_TABLE)]
