"""
Invoice linking.

Finds the unit cost of a manifest SKU in the text of the supplier invoices.
The SKU is searched as a whole word, case-insensitive, with hyphens optional
(OCR output regularly drops or adds them). The first invoice containing the
SKU wins; the first "£<amount>" within 200 characters of the hit is the cost.
"""

import re
from dataclasses import dataclass, replace
from typing import Iterable, Optional

from .progress import ProgressReporter

PRICE_WINDOW = 200
NOT_FOUND_NAME = 'Not found'

_PRICE = re.compile(r'£\s*(\d+\.?\d*)')


@dataclass(frozen=True)
class InvoiceDocument:
    text: str
    shipping_total: float = 0.0
    invoice_date: str = ''
    vendor_number: str = ''
    filename: str = ''
    index: int = 0


@dataclass(frozen=True)
class InvoiceLink:
    sku: str
    unit_cost: float = 0.0
    source_invoice_index: int = -1
    invoice_date: str = ''
    vendor_number: str = ''
    shipping: float = 0.0
    source_filename: str = NOT_FOUND_NAME

    @property
    def found(self) -> bool:
        return self.source_invoice_index >= 0


def not_found(sku: str) -> InvoiceLink:
    return InvoiceLink(sku=sku)


def sku_pattern(sku: str) -> re.Pattern:
    fragments = [re.escape(part) for part in sku.split('-')]
    return re.compile(r'\b' + '-?'.join(fragments) + r'\b', re.IGNORECASE)


def apply_shipping_discount(invoices: list[InvoiceDocument], discount: float) -> list[InvoiceDocument]:
    """Split the discount equally across invoices, never taking shipping below 0."""
    if not discount or discount <= 0 or not invoices:
        return list(invoices)
    share = discount / len(invoices)
    return [replace(inv, shipping_total=max(0.0, inv.shipping_total - share)) for inv in invoices]


def total_shipping(invoices: Iterable[InvoiceDocument]) -> float:
    return sum(inv.shipping_total for inv in invoices)


class InvoiceLinker:

    def __init__(self, invoices: list[InvoiceDocument]):
        self.invoices = list(invoices)
        self._cache: dict[str, InvoiceLink] = {}

    def link(self, sku) -> InvoiceLink:
        sku = '' if sku is None else str(sku).strip()
        if sku in self._cache:
            return self._cache[sku]
        result = self._search(sku)
        self._cache[sku] = result
        return result

    def _search(self, sku: str) -> InvoiceLink:
        if not sku:
            return not_found(sku)

        pattern = sku_pattern(sku)
        for invoice in self.invoices:
            hit = pattern.search(invoice.text or '')
            if hit is None:
                continue
            window = invoice.text[hit.start():hit.start() + PRICE_WINDOW]
            price = _PRICE.search(window)
            if price is None:
                return not_found(sku)
            return InvoiceLink(
                sku=sku,
                unit_cost=float(price.group(1)),
                source_invoice_index=invoice.index,
                invoice_date=invoice.invoice_date,
                vendor_number=invoice.vendor_number,
                shipping=invoice.shipping_total,
                source_filename=invoice.filename,
            )
        return not_found(sku)

    def link_all(self, skus: Iterable[str], reporter: Optional[ProgressReporter] = None,
                 interval: int = 20) -> dict[str, InvoiceLink]:
        distinct = list(dict.fromkeys('' if s is None else str(s).strip() for s in skus))
        links = {}
        for i, sku in enumerate(distinct):
            links[sku] = self.link(sku)
            if reporter is not None:
                reporter.every(i, interval, f"Searching invoices: {i + 1}/{len(distinct)} SKUs...")
        return links


def link(sku: str, invoices: list[InvoiceDocument]) -> InvoiceLink:
    return InvoiceLinker(invoices).link(sku)
