"""
Allocation engine.

Two proportional passes over the manifest rows:

  cost      grouped by lot key; a lot's invoice cost is split by each row's
            share of the lot's retail total (the manifest "Total RRP" column,
            RRP x quantity). A single-row lot takes the whole cost, a lot whose
            retail total is 0 gets 0 on every row.
  shipping  grouped by source invoice; the invoice's shipping is split by
            weight metric (weight x quantity), 0 when the group's metric is 0

Then per-row VAT, totals, postage, sale prices and listing text. Listing SKUs
are memoised per ASIN: the first row seen for an ASIN fixes its SKU.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

import numpy as np
import pandas as pd

from .classifier import CategoryClassifier, DEFAULT_CATEGORY_ID
from .invoices import InvoiceLink, not_found
from .listing_text import (
    TITLE_MAX_LENGTH,
    extract_item_specifics,
    full_title,
    generate_tags,
    meta_description,
    rounded_rrp,
    shorten_title,
)
from .manifest import ManifestRow
from .postage import DEFAULT_POSTAGE_TABLE, postage_for_weight
from .progress import ProgressReporter
from .rounding import round2

VAT_RATE = 0.2
RRP_PRICE_FACTOR = 0.85
LISTING_FEE = 0.15
BEST_OFFER_FACTOR = 0.93

COST_GROUP_KEYS = ('sku', 'asin')


def date_prefix(date_str: str) -> str:
    """'2024-03-07' -> '070324'."""
    return datetime.strptime(str(date_str).strip(), '%Y-%m-%d').strftime('%d%m%y')


@dataclass(frozen=True)
class AllocatedRow:
    manifest: ManifestRow
    link: InvoiceLink
    cost: float
    shipping: float
    vat: float
    total_cost: float
    cost_per_unit: float
    postage: float
    postage_code: int
    listing_sku: str
    sku_location: str
    short_title: str
    full_title: str
    rounded_rrp: int
    category_id: object
    category_path: str
    category_score: int
    sale_price: float
    best_offer_price: float
    tags: str
    meta_description: str
    specifics: dict = field(default_factory=dict)

    @property
    def quantity(self) -> int:
        return self.manifest.quantity

    @property
    def weight_metric(self) -> float:
        return self.manifest.weight_metric

    @property
    def image_urls(self) -> str:
        return '|'.join(self.manifest.images)


def _link_for(row: ManifestRow, links: dict) -> InvoiceLink:
    return links.get(row.sku) or not_found(row.sku)


def _group_keys(rows: list[ManifestRow], group_by: str) -> list[str]:
    keys = []
    for row in rows:
        key = getattr(row, group_by)
        # rows without a key are lots of their own
        keys.append(key if key else f"\x00row{row.row_index}")
    return keys


def allocate_costs(rows: list[ManifestRow], links: dict, group_by: str = 'sku') -> list[float]:
    if group_by not in COST_GROUP_KEYS:
        raise ValueError(f"Unknown cost group key '{group_by}' (expected one of {COST_GROUP_KEYS})")
    if not rows:
        return []

    frame = pd.DataFrame({
        'key': _group_keys(rows, group_by),
        'retail_total': [r.retail_total for r in rows],
        'invoice_cost': [_link_for(r, links).unit_cost for r in rows],
    })
    grouped = frame.groupby('key', sort=False)
    size = grouped['retail_total'].transform('count')
    sum_total = grouped['retail_total'].transform('sum')
    lot_cost = grouped['invoice_cost'].transform('first')

    share = np.where(sum_total > 0, frame['retail_total'] / sum_total.where(sum_total > 0, 1.0), 0.0)
    cost = np.where(size == 1, lot_cost, lot_cost * share)
    return [float(c) for c in cost]


def allocate_shipping(rows: list[ManifestRow], links: dict) -> list[float]:
    if not rows:
        return []

    row_links = [_link_for(r, links) for r in rows]
    frame = pd.DataFrame({
        'invoice': [link.source_invoice_index for link in row_links],
        'metric': [r.weight_metric for r in rows],
        'shipping': [link.shipping if link.found else 0.0 for link in row_links],
    })
    grouped = frame.groupby('invoice', sort=False)
    sum_metric = grouped['metric'].transform('sum')
    invoice_shipping = grouped['shipping'].transform('first')

    shipping = np.where(
        sum_metric > 0,
        invoice_shipping * frame['metric'] / sum_metric.where(sum_metric > 0, 1.0),
        0.0,
    )
    return [float(s) for s in shipping]


class ListingSkuRegistry:
    """First-seen ASIN fixes the listing SKU for every later row with that ASIN."""

    def __init__(self, prefix: str):
        self.prefix = prefix
        self._by_asin: dict[str, str] = {}

    def sku_for(self, asin: str, cost_per_unit: float) -> str:
        generated = f"{self.prefix}/{int(math.ceil(cost_per_unit))}/"
        if not asin:
            return generated
        return self._by_asin.setdefault(asin, generated)


class AllocationEngine:

    def __init__(self, classifier: Optional[CategoryClassifier] = None, postage_tiers=None,
                 cost_group_by: str = 'sku', title_max_length: int = TITLE_MAX_LENGTH):
        self.classifier = classifier or CategoryClassifier()
        self.postage_tiers = list(postage_tiers) if postage_tiers else list(DEFAULT_POSTAGE_TABLE)
        self.cost_group_by = cost_group_by
        self.title_max_length = title_max_length

    def allocate(self, rows: list[ManifestRow], links: dict, listing_date: str,
                 reporter: Optional[ProgressReporter] = None, interval: int = 50) -> list[AllocatedRow]:
        reporter = reporter or ProgressReporter()

        reporter.status("Calculating proportional costs...")
        costs = allocate_costs(rows, links, self.cost_group_by)

        reporter.status("Allocating shipping costs...")
        shipping = allocate_shipping(rows, links)

        registry = ListingSkuRegistry(date_prefix(listing_date))
        allocated = []
        for i, row in enumerate(rows):
            allocated.append(self._derive(row, _link_for(row, links), costs[i], shipping[i], registry))
            reporter.every(i, interval, f"Allocating: {i + 1}/{len(rows)} rows...")
        return allocated

    def _derive(self, row: ManifestRow, link: InvoiceLink, raw_cost: float, raw_shipping: float,
                registry: ListingSkuRegistry) -> AllocatedRow:
        cost = round2(raw_cost)
        shipping = round2(raw_shipping)
        vat = round2((cost + shipping) * VAT_RATE)
        total = round2(cost + shipping + vat)
        cost_per_unit = round2(total / (row.quantity or 1))

        tier = postage_for_weight(row.weight, self.postage_tiers)
        listing_sku = registry.sku_for(row.asin, cost_per_unit)
        sale_price = round2(row.rrp * RRP_PRICE_FACTOR + LISTING_FEE + tier.postage)

        short = shorten_title(row.title, self.title_max_length)
        title = full_title(short, row.rrp)
        tags = generate_tags(title)
        category = self.classifier.match(row.title)

        return AllocatedRow(
            manifest=row,
            link=link,
            cost=cost,
            shipping=shipping,
            vat=vat,
            total_cost=total,
            cost_per_unit=cost_per_unit,
            postage=tier.postage,
            postage_code=tier.code,
            listing_sku=listing_sku,
            sku_location=f"/{listing_sku}/{tier.code}",
            short_title=short,
            full_title=title,
            rounded_rrp=rounded_rrp(row.rrp),
            category_id=category.category_id if category.category_id is not None else DEFAULT_CATEGORY_ID,
            category_path=category.category_path,
            category_score=category.score,
            sale_price=sale_price,
            best_offer_price=round2(sale_price * BEST_OFFER_FACTOR),
            tags=tags,
            meta_description=meta_description(tags, row.description),
            specifics=extract_item_specifics(row.title, row.description),
        )
