from pathlib import Path

import pytest
import yaml

from listing_builder.config import default_config, load_config
from listing_builder.invoices import InvoiceDocument
from listing_builder.manifest import ManifestColumns, parse_manifest


ROOT = Path(__file__).parent.parent

MANIFEST_HEADER = [
    'Lot', 'Pallet', 'SKU', 'Title', 'Description', 'ASIN', 'EAN', 'Category', 'Brand',
    'Department', 'Subcategory', 'Image 1', 'Image 2', 'Image 3', 'Image 4', 'Image 5',
    'Image 6', 'Quantity', 'Condition', 'Unit', 'Weight', 'Currency', 'RRP', 'Total RRP',
]


def pytest_addoption(parser):
    parser.addoption(
        "--client-dir",
        default=str(ROOT / "clients" / "default"),
        help="Path to client directory containing config.yaml",
    )


@pytest.fixture(scope="session")
def client_dir(request):
    return Path(request.config.getoption("--client-dir")).resolve()


@pytest.fixture(scope="session")
def client_yaml(client_dir):
    with open(client_dir / "config.yaml", "r", encoding="utf-8") as f:
        return yaml.safe_load(f)


@pytest.fixture(scope="session")
def client_config(client_dir):
    return load_config(client_dir / "config.yaml")


@pytest.fixture
def config(tmp_path):
    cfg = default_config()
    cfg['_resolved_paths']['output_dir'] = tmp_path / "output"
    return cfg


def manifest_cells(sku='', title='', description='', asin='', brand='', subcategory='',
                   quantity=1, weight=0, rrp=0, condition='New', images=(), ean=''):
    cells = [''] * len(MANIFEST_HEADER)
    cells[0] = 'L1'
    cells[2] = sku
    cells[3] = title
    cells[4] = description
    cells[5] = asin
    cells[6] = ean
    cells[8] = brand
    cells[10] = subcategory
    for i, url in enumerate(images[:6]):
        cells[11 + i] = url
    cells[17] = quantity
    cells[18] = condition
    cells[20] = weight
    cells[21] = 'GBP'
    cells[22] = rrp
    cells[23] = rrp * (quantity or 1) if isinstance(rrp, (int, float)) else rrp
    return cells


@pytest.fixture
def make_manifest():
    def _make(*row_kwargs):
        rows = [MANIFEST_HEADER] + [manifest_cells(**kw) for kw in row_kwargs]
        return parse_manifest(rows, ManifestColumns())
    return _make


@pytest.fixture
def make_invoice():
    def _make(text, shipping=0.0, index=0, invoice_date='01/03/2024', vendor='INV001', filename=None):
        return InvoiceDocument(
            text=text,
            shipping_total=shipping,
            invoice_date=invoice_date,
            vendor_number=vendor,
            filename=filename or f"invoice_{index}.pdf",
            index=index,
        )
    return _make


@pytest.fixture
def taxonomy_rows():
    return [
        {"Category ID": 100, "Category Path": "Home > Kitchen > Cookware"},
        {"Category ID": 200, "Category Path": "Toys > Games > Board Games"},
        {"Category ID": 300, "Category Path": "Garden > Tools"},
        {"Category ID": 400, "Category Path": "Clothing > Men > Jumpers"},
    ]
