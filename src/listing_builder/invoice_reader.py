"""
Supplier invoice PDFs -> InvoiceDocument.

Text comes from pdfplumber, page by page. Three header fields are pulled out
with regexes: net shipping, order date and the invoice (vendor) number. Fields
that are not found read as 0 / empty.
"""

import re
from pathlib import Path

import pdfplumber

from .invoices import InvoiceDocument

SHIPPING_PATTERNS = (
    re.compile(r'Net\s+shipping.*?Â?£\s*(\d+\.?\d*)', re.IGNORECASE | re.DOTALL),
    re.compile(r'shipping.*?Â?£\s*(\d+\.?\d*)', re.IGNORECASE | re.DOTALL),
)
ORDER_DATE_PATTERN = re.compile(r'ORDER\s+DATE[:\s]+(\d{2}[-/]\d{2}[-/]\d{4})', re.IGNORECASE)
VENDOR_PATTERN = re.compile(r'INVOICE\s+([A-Z0-9]+)', re.IGNORECASE)


def extract_invoice_fields(text: str) -> dict:
    shipping = 0.0
    for pattern in SHIPPING_PATTERNS:
        m = pattern.search(text)
        if m:
            shipping = float(m.group(1))
            break

    m = ORDER_DATE_PATTERN.search(text)
    invoice_date = m.group(1) if m else ''

    m = VENDOR_PATTERN.search(text)
    vendor_number = m.group(1) if m else ''

    return {
        'shipping_total': shipping,
        'invoice_date': invoice_date,
        'vendor_number': vendor_number,
    }


def invoice_from_text(text: str, filename: str = '', index: int = 0) -> InvoiceDocument:
    return InvoiceDocument(text=text, filename=filename, index=index, **extract_invoice_fields(text))


def extract_pdf_text(pdf_path: Path) -> str:
    pages = []
    with pdfplumber.open(pdf_path) as pdf:
        for page in pdf.pages:
            pages.append(page.extract_text() or '')
    return '\n'.join(pages)


def read_invoices(pdf_paths) -> list[InvoiceDocument]:
    invoices = []
    for index, path in enumerate(pdf_paths):
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Invoice PDF not found: {path}")
        invoices.append(invoice_from_text(extract_pdf_text(path), filename=path.name, index=index))
    return invoices
