"""
Listing sheet, postage sheet and eBay CSV synthesis.

The formula evaluator below is deliberately tiny: it understands cell
references, arithmetic, ROUND(x,2) and SUBTOTAL(9,range), which is all the
listing sheet uses.
"""

import csv
import re
from dataclasses import replace

import pytest
from openpyxl import load_workbook
from openpyxl.utils import column_index_from_string

from listing_builder.allocation import AllocationEngine
from listing_builder.invoices import InvoiceLinker
from listing_builder.manifest import to_number
from listing_builder.rounding import round2
from listing_builder.synthesis import (
    ACTION_HEADER,
    CSV_BASE_HEADER,
    CSV_PREAMBLE,
    LISTING_COLUMNS,
    DocumentSynthesizer,
    FormulaCell,
    SheetLayout,
    SynthesisError,
    cell_value,
    csv_header,
    escape_csv,
    format_value,
)
from listing_builder.workbook import write_artifacts, write_workbook

from conftest import MANIFEST_HEADER

CELL_REF = re.compile(r'\b([A-Z]{1,3})(\d+)\b')
SUBTOTAL = re.compile(r'SUBTOTAL\(9,([A-Z]+)(\d+):([A-Z]+)(\d+)\)')


def lookup(sheet, letter, number):
    return to_number(cell_value(sheet[int(number) - 1][column_index_from_string(letter) - 1]))


def evaluate(formula, sheet):
    m = SUBTOTAL.fullmatch(formula)
    if m:
        letter, first, _, last = m.groups()
        return sum(lookup(sheet, letter, n) for n in range(int(first), int(last) + 1))
    expr = CELL_REF.sub(lambda ref: repr(lookup(sheet, ref.group(1), ref.group(2))), formula)
    return eval(expr, {'ROUND': lambda x, digits: round2(x)})


@pytest.fixture
def bundle(make_manifest, make_invoice):
    manifest = make_manifest(
        dict(sku='LOT1', title='Blue Cotton Jumper Large', asin='B01', brand='Acme', subcategory='Jumpers',
             rrp=30, weight=0.4, images=('http://img/a.jpg', 'http://img/b.jpg')),
        dict(sku='LOT1', title='Steel Kettle', description='Boils fast, "rapid" model', asin='B02',
             brand='Kettlr', rrp=70, weight=1.5, quantity=2),
        dict(sku='K9', title='Garden Rake', asin='B03', rrp=12.49, weight=2.2, quantity=3),
        dict(sku='MISSING', title='Lamp', asin='B04', rrp=9.99, weight=0.1),
    )
    invoices = [
        make_invoice("LOT1 mixed pallet £50.00", shipping=6.5, index=0),
        make_invoice("K9 rake x3 £13.33", shipping=2.25, index=1, vendor='INV002'),
    ]
    links = InvoiceLinker(invoices).link_all(r.sku for r in manifest.rows)
    rows = AllocationEngine().allocate(manifest.rows, links, '2024-03-07')
    return DocumentSynthesizer().synthesize(manifest.header, rows, '070324')


def layout_for(bundle):
    return SheetLayout(bundle.listing_rows[0][2:2 + 24])


class TestListingSheet:

    def test_header(self, bundle):
        header = bundle.listing_rows[0]
        assert header[:2] == ['Order Date', 'Vendor']
        assert header[2:26] == MANIFEST_HEADER
        assert header[26:] == [title for title, _ in LISTING_COLUMNS]

    def test_one_row_per_item_plus_totals(self, bundle):
        assert len(bundle.listing_rows) == 1 + len(bundle.rows) + 1

    def test_formulas_agree_with_literals(self, bundle):
        sheet = bundle.listing_rows
        checked = 0
        for row in sheet[1:]:
            for cell in row:
                if isinstance(cell, FormulaCell):
                    assert evaluate(cell.formula, sheet) == pytest.approx(cell.value, abs=1e-6), cell.formula
                    checked += 1
        assert checked >= 7 * len(bundle.rows) + 8

    def test_formula_literals_match_allocation(self, bundle):
        layout = layout_for(bundle)
        for excel_row, allocated in enumerate(bundle.rows, start=2):
            cells = bundle.listing_rows[excel_row - 1]
            assert cells[layout.index('vat')].value == allocated.vat
            assert cells[layout.index('total_cost')].value == allocated.total_cost
            assert cells[layout.index('cost_per_unit')].value == allocated.cost_per_unit
            assert cells[layout.index('price')].value == allocated.sale_price
            assert cells[layout.index('best_offer')].value == allocated.best_offer_price
            assert cells[layout.index('vat')].formula == (
                f"ROUND(({layout.letter('cost')}{excel_row}+{layout.letter('shipping')}{excel_row})*0.2,2)"
            )

    def test_invoice_fields_in_leading_columns(self, bundle):
        assert bundle.listing_rows[1][:2] == ['01/03/2024', 'INV001']
        assert bundle.listing_rows[3][:2] == ['01/03/2024', 'INV002']
        assert bundle.listing_rows[4][:2] == ['', '']

    def test_totals_row(self, bundle):
        layout = layout_for(bundle)
        totals = bundle.listing_rows[-1]
        cost = totals[layout.index('cost')]
        letter = layout.letter('cost')
        assert cost.formula == f"SUBTOTAL(9,{letter}2:{letter}5)"
        assert cost.value == pytest.approx(sum(r.cost for r in bundle.rows))
        assert totals[layout.index('shipping')].value == pytest.approx(6.5 + 2.25)
        assert totals[layout.index('listing_sku')] == ''

    def test_empty_manifest_totals_are_plain_zeros(self, tmp_path):
        empty = DocumentSynthesizer().synthesize(MANIFEST_HEADER, [], '070324')
        assert len(empty.listing_rows) == 2
        totals = empty.listing_rows[-1]
        assert not any(isinstance(cell, FormulaCell) for cell in totals)
        layout = layout_for(empty)
        assert totals[layout.index('cost')] == 0.0

        ws = load_workbook(write_workbook(empty, tmp_path / "empty.xlsx"))['070324']
        assert ws.cell(row=2, column=layout.index('cost') + 1).value == 0

    def test_mismatched_allocation_raises(self, bundle):
        broken = [replace(bundle.rows[0], vat=bundle.rows[0].vat + 1)] + bundle.rows[1:]
        with pytest.raises(SynthesisError):
            DocumentSynthesizer().synthesize(bundle.listing_rows[0][2:26], broken, '070324')

    def test_listing_settings_override(self, bundle):
        synthesizer = DocumentSynthesizer(listing_settings={'dispatch_location': 'Leeds'})
        redone = synthesizer.synthesize(MANIFEST_HEADER, bundle.rows, '070324')
        layout = layout_for(redone)
        assert redone.listing_rows[1][layout.index('dispatch_location')] == 'Leeds'
        assert redone.listing_rows[1][layout.index('postal_code')] == 'DA4 9EW'


class TestPostageSheet:

    def test_default_tiers(self, bundle):
        assert bundle.postage_rows[0][0] == 'Weight (Max)'
        assert [r[0] for r in bundle.postage_rows[1:]] == [0, 2, 5, 10]


class TestCsv:

    def test_preamble_and_header(self, bundle):
        assert bundle.csv_lines[:4] == list(CSV_PREAMBLE)
        header = bundle.csv_lines[4].split(',')
        assert header[:11] == list(CSV_BASE_HEADER)
        assert header[0] == ACTION_HEADER
        assert header[11:] == ['C:Brand', 'C:Color', 'C:Material', 'C:Size', 'C:Type']

    def test_header_always_has_brand_and_type(self):
        assert csv_header([]) == list(CSV_BASE_HEADER)
        assert csv_header(['Brand', 'Type'])[-2:] == ['C:Brand', 'C:Type']

    def test_rows(self, bundle):
        records = list(csv.reader(bundle.csv_lines[5:]))
        assert len(records) == len(bundle.rows)
        first = records[0]
        assert first[0] == 'Draft'
        assert first[1] == bundle.rows[0].listing_sku
        assert first[2] == '47155'
        assert first[3] == 'Blue Cotton Jumper Large RRP £30'
        assert first[4] == 'b01'
        assert first[7] == 'http://img/a.jpg|http://img/b.jpg'
        assert first[8] == '1500'
        assert first[10] == 'FixedPrice'
        assert first[11:] == ['Acme', 'blue', 'cotton', 'large', 'Jumpers']

    def test_description_quoted(self, bundle):
        assert '"Boils fast, ""rapid"" model"' in bundle.csv_lines[6]
        assert list(csv.reader([bundle.csv_lines[6]]))[0][9] == 'Boils fast, "rapid" model'

    def test_same_values_as_listing_sheet(self, bundle):
        layout = layout_for(bundle)
        records = list(csv.reader(bundle.csv_lines[5:]))
        for record, sheet_row, allocated in zip(records, bundle.listing_rows[1:], bundle.rows):
            assert record[2] == format_value(sheet_row[layout.index('category_id')])
            assert float(record[5]) == cell_value(sheet_row[layout.index('price')])
            assert int(record[6]) == sheet_row[layout.index('quantity_out')] == allocated.quantity
            assert record[1] == allocated.listing_sku == sheet_row[layout.index('listing_sku')]

    @pytest.mark.parametrize("value,expected", [
        ('plain', 'plain'),
        ('a,b', '"a,b"'),
        ('say "hi"', '"say ""hi"""'),
        ('two\nlines', '"two\nlines"'),
        (None, ''),
        (12.0, '12'),
        (87.12, '87.12'),
        (3, '3'),
    ])
    def test_escape_csv(self, value, expected):
        assert escape_csv(value) == expected


class TestWorkbook:

    @pytest.fixture
    def saved(self, bundle, tmp_path):
        return write_workbook(bundle, tmp_path / "listing.xlsx")

    def test_sheets_and_formulas(self, bundle, saved):
        wb = load_workbook(saved)
        assert wb.sheetnames == ['070324', 'Postage Rate Table']
        layout = layout_for(bundle)
        ws = wb['070324']
        vat = ws.cell(row=2, column=layout.index('vat') + 1).value
        assert vat.startswith('=ROUND(')
        assert ws.cell(row=1, column=1).value == 'Order Date'

    def test_formula_cells_keep_computed_values(self, bundle, saved):
        ws = load_workbook(saved, data_only=True)['070324']
        layout = layout_for(bundle)
        for excel_row, allocated in enumerate(bundle.rows, start=2):
            def cached(key):
                return ws.cell(row=excel_row, column=layout.index(key) + 1).value
            assert cached('vat') == allocated.vat
            assert cached('total_cost') == allocated.total_cost
            assert cached('cost_per_unit') == allocated.cost_per_unit
            assert cached('price') == allocated.sale_price
            assert cached('store_price') == allocated.sale_price
            assert cached('best_offer') == allocated.best_offer_price
            assert cached('weight_metric') == pytest.approx(allocated.weight_metric)

        totals_row = len(bundle.rows) + 2
        cost = ws.cell(row=totals_row, column=layout.index('cost') + 1).value
        assert cost == pytest.approx(sum(r.cost for r in bundle.rows))

    def test_text_cells_written_verbatim(self, bundle, saved):
        ws = load_workbook(saved)['070324']
        layout = layout_for(bundle)
        assert ws.cell(row=2, column=layout.index('image_urls') + 1).value == 'http://img/a.jpg|http://img/b.jpg'
        assert ws.cell(row=2, column=layout.index('listing_sku') + 1).value == bundle.rows[0].listing_sku

    def test_literal_mode(self, bundle, tmp_path):
        path = write_workbook(bundle, tmp_path / "literal.xlsx", write_formulas=False)
        ws = load_workbook(path)['070324']
        layout = layout_for(bundle)
        assert ws.cell(row=2, column=layout.index('vat') + 1).value == bundle.rows[0].vat

    def test_write_artifacts(self, bundle, tmp_path):
        listing_path, csv_path = write_artifacts(bundle, tmp_path / "out")
        assert listing_path.name == 'LISTING_070324.xlsx'
        assert csv_path.name == 'ebay_upload_070324.csv'
        assert listing_path.exists()
        assert csv_path.read_text(encoding='utf-8') == bundle.csv_text
