"""
Document synthesis.

Builds the listing sheet, the postage sheet and the eBay CSV from one list of
AllocatedRows. Both documents read the same row objects, so cost, price,
category id, SKU and quantity cannot drift apart between them.

Formula cells carry the literal the formula evaluates to. The literal is
recomputed here from the row's own cell values and checked against the
allocation result.
"""

import math
from dataclasses import dataclass, field
from typing import Optional

from openpyxl.utils import get_column_letter

from .allocation import (
    BEST_OFFER_FACTOR,
    LISTING_FEE,
    RRP_PRICE_FACTOR,
    VAT_RATE,
    AllocatedRow,
)
from .classifier import DEFAULT_CATEGORY_ID
from .manifest import ManifestColumns, to_number
from .postage import postage_table_rows
from .progress import ProgressReporter
from .rounding import round2

TOLERANCE = 1e-6

ACTION_HEADER = 'Action(SiteID=UK|Country=GB|Currency=GBP|Version=1193|CC=UTF-8)'
CONDITION_ID = 1500
LISTING_FORMAT = 'FixedPrice'
POSTAGE_SHEET_NAME = 'Postage Rate Table'

CSV_PREAMBLE = (
    '#INFO,Version=0.0.2,Template= eBay-draft-listings-template_GB,,,,,,,',
    '#INFO Action and Category ID are required fields. 1) Set Action to Draft 2) Please find the '
    'category ID for your listings here: https://pages.ebay.com/sellerinformation/news/categorychanges.html,,,,,,,,,,',
    "#INFO After you've successfully uploaded your draft from the Seller Hub Reports tab, complete your "
    'drafts to active listings here: https://www.ebay.co.uk/sh/lst/drafts,,,,,,,,,',
    '#INFO,,,,,,,,,,',
)
CSV_BASE_HEADER = (
    ACTION_HEADER, 'Custom label (SKU)', 'Category ID', 'Title', 'UPC', 'Price',
    'Quantity', 'Item photo URL', 'Condition ID', 'Description', 'Format',
)
MANDATORY_SPECIFICS = ('Brand', 'Type')

DEFAULT_LISTING_SETTINGS = {
    'store_category_id': 20685,
    'store_category': 1,
    'mpn': 'N/A',
    'country_code': 'GB',
    'dispatch_location': 'Dartford',
    'postal_code': 'DA4 9EW',
    'policy_payment': 252103073016,
    'policy_shipping': 254956651016,
    'policy_return': 'Return accepted Copy',
    'package_type': 'Package/thick envelope',
    'measurement_system': 'cm',
    'package_length': 45,
    'package_width': 45,
    'package_depth': 16,
    'template_version': 'S3G TEP',
}

# (header, value key) after the manifest passthrough block; None = always blank
LISTING_COLUMNS = (
    ('Cost', 'cost'),
    ('Shipping ', 'shipping'),
    ('VAT', 'vat'),
    ('Total Cost', 'total_cost'),
    ('Cost Per one', 'cost_per_unit'),
    ('Postage', 'postage'),
    ('Postage code', 'postage_code'),
    ('SKU', 'listing_sku'),
    ('Location', None),
    ('SKU Location ', 'sku_location'),
    ('Shorten Name', 'short_title'),
    ('', 'rrp_label'),
    ('', 'rounded_rrp'),
    ('', 'rrp_text'),
    (ACTION_HEADER, 'action'),
    ('Custom label (SKU)', 'sku_location'),
    ('Category ID', 'category_id'),
    ('Title', 'full_title'),
    ('UPC', 'manifest_sku'),
    ('Price', 'price'),
    ('Quantity', 'quantity_out'),
    ('Item photo URL', 'image_urls'),
    ('Condition ID', 'condition'),
    ('Description', 'description'),
    ('Format', 'format'),
    ('', None),
    ('', None),
    ('SKU', 'sku_location'),
    ('Title', 'full_title'),
    ('Description', 'description'),
    ('Tags', 'date_prefix'),
    ('MetaKeywords', 'tags'),
    ('MetaDescription', 'meta_description'),
    ('MobileDescription', 'meta_description'),
    ('CategoryID', 'store_category_id'),
    ('StoreCategory', 'store_category'),
    ('PrivateListing', None),
    ('UpToQuantity', 'quantity_out'),
    ('WarehouseQuantity', 'quantity_out'),
    ('InventoryControl', None),
    ('Price', 'store_price'),
    ('WholesalePrice', 'cost_per_unit'),
    ('BestOffer', 'best_offer_enabled'),
    ('BestOfferAccept', 'best_offer'),
    ('BestOfferDecline', None),
    ('C:MPN', 'mpn'),
    ('C:Brand', 'brand'),
    ('C:Size', None),
    ('Condition', 'condition'),
    ('CountryCode', 'country_code'),
    ('Location', 'dispatch_location'),
    ('PostalCode', 'postal_code'),
    ('PolicyPayment', 'policy_payment'),
    ('PolicyShipping', 'policy_shipping'),
    ('PolicyReturn', 'policy_return'),
    ('PackageType', 'package_type'),
    ('MeasurementSystem', 'measurement_system'),
    ('PackageLength', 'package_length'),
    ('PackageWidth', 'package_width'),
    ('PackageDepth', 'package_depth'),
    ('WeightMajor', 'weight_major'),
    ('WeightMinor', None),
    ('Image 1', 'image_1'),
    ('Image 2', 'image_2'),
    ('Image 3', 'image_3'),
    ('Image 4', 'image_4'),
    ('Image 5', 'image_5'),
    ('Image 6', 'image_6'),
    ('ASIN', 'asin'),
    ('ConditionNote', None),
    ('OriginalRetailPrice', 'rrp'),
    ('Model', 'brand'),
    ('EAN', 'ean'),
    ('3DsellersCSVTemplateVersion', 'template_version'),
    ('', None),
    ('', None),
    ('SKU', 'sku_location'),
    ('CONDITION', 'condition'),
    ('EBAY Title', 'full_title'),
    ('BRAND', 'brand'),
)

TOTAL_KEYS = ('weight', 'weight_metric', 'rrp_in', 'retail_total', 'cost', 'shipping', 'vat', 'total_cost')


class SynthesisError(Exception):
    pass


@dataclass(frozen=True)
class FormulaCell:
    formula: str
    value: float


@dataclass
class ListingBundle:
    prefix: str
    rows: list[AllocatedRow]
    listing_rows: list[list]
    postage_rows: list[list]
    csv_lines: list[str]
    specifics_columns: list[str] = field(default_factory=list)
    postage_source: str = ''

    @property
    def listing_filename(self) -> str:
        return f"LISTING_{self.prefix}.xlsx"

    @property
    def csv_filename(self) -> str:
        return f"ebay_upload_{self.prefix}.csv"

    @property
    def sheet_name(self) -> str:
        return self.prefix

    @property
    def csv_text(self) -> str:
        return '\n'.join(self.csv_lines)

    @property
    def category_match_count(self) -> int:
        return sum(1 for r in self.rows if r.category_score > 0)


def cell_value(cell):
    return cell.value if isinstance(cell, FormulaCell) else cell


def escape_csv(value) -> str:
    if value is None:
        return ''
    text = format_value(value)
    if ',' in text or '"' in text or '\n' in text:
        return '"' + text.replace('"', '""') + '"'
    return text


def format_value(value) -> str:
    if value is None:
        return ''
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, float):
        return str(int(value)) if value.is_integer() else repr(value)
    return str(value)


class SheetLayout:
    """Column positions of the listing sheet, addressable by value key."""

    def __init__(self, manifest_header: list, columns: ManifestColumns = ManifestColumns()):
        self.columns = columns
        width = columns.passthrough_width
        header = list(manifest_header[:width]) + [''] * max(0, width - len(manifest_header))

        self.keys: list[Optional[str]] = ['order_date', 'vendor']
        self.header: list = ['Order Date', 'Vendor']
        aliases = {
            columns.quantity: 'quantity',
            columns.weight: 'weight',
            columns.currency: 'weight_metric',
            columns.rrp: 'rrp_in',
            columns.retail_total: 'retail_total',
        }
        for i in range(width):
            self.keys.append(aliases.get(i, f"manifest:{i}"))
            self.header.append(header[i])
        for title, key in LISTING_COLUMNS:
            self.keys.append(key)
            self.header.append(title)

        self._position: dict[str, int] = {}
        for i, key in enumerate(self.keys):
            if key is not None and key not in self._position:
                self._position[key] = i

    def __len__(self):
        return len(self.keys)

    def has(self, key: str) -> bool:
        return key in self._position

    def index(self, key: str) -> int:
        return self._position[key]

    def letter(self, key: str) -> str:
        return get_column_letter(self._position[key] + 1)


class DocumentSynthesizer:

    def __init__(self, columns: ManifestColumns = ManifestColumns(), listing_settings: Optional[dict] = None):
        self.columns = columns
        self.settings = dict(DEFAULT_LISTING_SETTINGS)
        self.settings.update(listing_settings or {})

    # ── shared pass ─────────────────────────────────────────────────────

    def synthesize(self, manifest_header: list, rows: list[AllocatedRow], prefix: str,
                   postage_tiers=None, reporter: Optional[ProgressReporter] = None,
                   interval: int = 50) -> ListingBundle:
        reporter = reporter or ProgressReporter()
        layout = SheetLayout(manifest_header, self.columns)

        reporter.status("Analyzing item specifics...")
        specifics_columns = specifics_header(rows)

        reporter.status("Building Excel workbook...")
        listing_rows = [list(layout.header)]
        csv_lines = list(CSV_PREAMBLE)
        csv_lines.append(','.join(escape_csv(h) for h in csv_header(specifics_columns)))

        for i, row in enumerate(rows):
            listing_rows.append(self.listing_row(layout, row, excel_row=i + 2, prefix=prefix))
            csv_lines.append(','.join(escape_csv(v) for v in self.csv_row(row, specifics_columns)))
            reporter.every(i, interval, f"Building Excel: {i + 1}/{len(rows)} rows...")

        listing_rows.append(self.totals_row(layout, listing_rows[1:]))

        return ListingBundle(
            prefix=prefix,
            rows=list(rows),
            listing_rows=listing_rows,
            postage_rows=postage_table_rows(postage_tiers),
            csv_lines=csv_lines,
            specifics_columns=specifics_columns,
        )

    # ── listing sheet ───────────────────────────────────────────────────

    def _values(self, row: AllocatedRow, prefix: str) -> dict:
        m = row.manifest
        values = {
            'order_date': row.link.invoice_date,
            'vendor': row.link.vendor_number,
            'quantity': m.quantity,
            'weight': m.weight,
            'rrp_in': m.rrp,
            'retail_total': m.retail_total,
            'cost': row.cost,
            'shipping': row.shipping,
            'postage': row.postage,
            'postage_code': row.postage_code,
            'listing_sku': row.listing_sku,
            'sku_location': row.sku_location,
            'short_title': row.short_title,
            'rrp_label': 'RRP £',
            'rounded_rrp': row.rounded_rrp,
            'rrp_text': f"RRP £{row.rounded_rrp}",
            'action': 'Draft',
            'category_id': row.category_id,
            'full_title': row.full_title,
            'manifest_sku': m.sku,
            'quantity_out': m.quantity,
            'image_urls': row.image_urls,
            'condition': m.condition,
            'description': m.description,
            'format': LISTING_FORMAT,
            'date_prefix': prefix,
            'tags': row.tags,
            'meta_description': row.meta_description,
            'best_offer_enabled': 'true',
            'brand': m.brand,
            'weight_major': int(math.ceil(m.weight)),
            'asin': m.asin_raw,
            'rrp': m.rrp,
            'ean': m.ean,
        }
        for n in range(6):
            index = self.columns.images[n] if n < len(self.columns.images) else -1
            raw = m.cells[index] if 0 <= index < len(m.cells) else ''
            values[f"image_{n + 1}"] = raw
        for key in DEFAULT_LISTING_SETTINGS:
            values[key] = self.settings[key]
        return values

    def listing_row(self, layout: SheetLayout, row: AllocatedRow, excel_row: int, prefix: str) -> list:
        values = self._values(row, prefix)
        cells = []
        for key in layout.keys:
            if key is None:
                cells.append('')
            elif key.startswith('manifest:'):
                cells.append(row.manifest.cells[int(key.split(':', 1)[1])])
            else:
                cells.append(values.get(key, ''))

        def ref(key):
            return f"{layout.letter(key)}{excel_row}"

        def at(key):
            return to_number(cell_value(cells[layout.index(key)]))

        def put(key, formula, value, expected=None):
            if expected is not None and abs(value - expected) > TOLERANCE:
                raise SynthesisError(
                    f"Row {excel_row}: {key} formula evaluates to {value}, allocation gave {expected}"
                )
            cells[layout.index(key)] = FormulaCell(formula, value)

        put('weight_metric', f"{ref('weight')}*{ref('quantity')}",
            at('weight') * at('quantity'), row.weight_metric)
        put('vat', f"ROUND(({ref('cost')}+{ref('shipping')})*{VAT_RATE},2)",
            round2((at('cost') + at('shipping')) * VAT_RATE), row.vat)
        put('total_cost', f"ROUND({ref('cost')}+{ref('shipping')}+{ref('vat')},2)",
            round2(at('cost') + at('shipping') + at('vat')), row.total_cost)
        put('cost_per_unit', f"ROUND({ref('total_cost')}/{ref('quantity')},2)",
            round2(at('total_cost') / at('quantity')), row.cost_per_unit)

        price_formula = f"ROUND(({ref('rrp_in')}*{RRP_PRICE_FACTOR})+{LISTING_FEE}+{ref('postage')},2)"
        price_value = round2(at('rrp_in') * RRP_PRICE_FACTOR + LISTING_FEE + at('postage'))
        put('price', price_formula, price_value, row.sale_price)
        put('store_price', price_formula, price_value, row.sale_price)
        put('best_offer', f"ROUND({ref('price')}*{BEST_OFFER_FACTOR},2)",
            round2(at('price') * BEST_OFFER_FACTOR), row.best_offer_price)
        return cells

    def totals_row(self, layout: SheetLayout, data_rows: list[list]) -> list:
        totals = [''] * len(layout)
        last = len(data_rows) + 1
        for key in TOTAL_KEYS:
            if not layout.has(key):
                continue
            index = layout.index(key)
            letter = layout.letter(key)
            value = round2(sum(to_number(cell_value(r[index])) for r in data_rows))
            # no data rows: a 2:1 range would point at the totals row itself
            totals[index] = FormulaCell(f"SUBTOTAL(9,{letter}2:{letter}{last})", value) if data_rows else value
        return totals

    # ── eBay CSV ────────────────────────────────────────────────────────

    def csv_row(self, row: AllocatedRow, specifics_columns: list[str]) -> list:
        m = row.manifest
        specifics = {'Brand': m.brand, 'Type': m.subcategory}
        specifics.update(row.specifics)
        return [
            'Draft',
            row.listing_sku,
            row.category_id if row.category_id not in (None, '') else DEFAULT_CATEGORY_ID,
            row.full_title,
            m.asin,
            row.sale_price,
            m.quantity,
            row.image_urls,
            CONDITION_ID,
            m.description,
            LISTING_FORMAT,
            *[specifics.get(key) or '' for key in specifics_columns],
        ]


def specifics_header(rows: list[AllocatedRow]) -> list[str]:
    keys = set(MANDATORY_SPECIFICS)
    for row in rows:
        keys.update(row.specifics)
    return sorted(keys)


def csv_header(specifics_columns: list[str]) -> list[str]:
    return list(CSV_BASE_HEADER) + [f"C:{key}" for key in specifics_columns]
