"""
Manifest parsing.

The manifest sheet is positional: a header row followed by one row per
purchased unit-lot. Column positions come from the client config (0-based).
Malformed numeric cells are read as 0; a missing or zero quantity reads as 1.
"""

import re
from dataclasses import dataclass, field
from pathlib import Path

import pandas as pd

PASSTHROUGH_WIDTH = 24

_LEADING_NUMBER = re.compile(r'\s*([-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?)')
_LEADING_INT = re.compile(r'\s*([-+]?\d+)')


@dataclass(frozen=True)
class ManifestColumns:
    sku: int = 2
    title: int = 3
    description: int = 4
    asin: int = 5
    ean: int = 6
    brand: int = 8
    subcategory: int = 10
    images: tuple = (11, 12, 13, 14, 15, 16)
    quantity: int = 17
    condition: int = 18
    weight: int = 20
    currency: int = 21
    rrp: int = 22
    retail_total: int = 23
    passthrough_width: int = PASSTHROUGH_WIDTH

    @classmethod
    def from_config(cls, columns: dict | None) -> 'ManifestColumns':
        if not columns:
            return cls()
        known = {k: v for k, v in columns.items() if k in cls.__dataclass_fields__ and v is not None}
        if 'images' in known:
            known['images'] = tuple(int(i) for i in known['images'])
        return cls(**known)

    @property
    def numeric(self) -> tuple:
        return (self.quantity, self.weight, self.rrp, self.retail_total)


def _is_blank(value) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and value != value:
        return True
    return isinstance(value, str) and not value.strip()


def to_number(value) -> float:
    """Leading numeric prefix of a cell ("1.5kg" -> 1.5); 0.0 when there is none."""
    if _is_blank(value) or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    m = _LEADING_NUMBER.match(str(value))
    return float(m.group(1)) if m else 0.0


def to_quantity(value) -> int:
    if _is_blank(value) or isinstance(value, bool):
        return 1
    if isinstance(value, (int, float)):
        qty = int(value)
    else:
        m = _LEADING_INT.match(str(value))
        qty = int(m.group(1)) if m else 0
    return qty if qty != 0 else 1


def to_text(value) -> str:
    if _is_blank(value):
        return ''
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


@dataclass(frozen=True)
class ManifestRow:
    row_index: int
    cells: tuple
    sku: str = ''
    title: str = ''
    description: str = ''
    asin: str = ''
    asin_raw: str = ''
    ean: str = ''
    brand: str = ''
    subcategory: str = ''
    images: tuple = ()
    quantity: int = 1
    condition: str = ''
    weight: float = 0.0
    rrp: float = 0.0
    retail_total: float = 0.0

    @property
    def weight_metric(self) -> float:
        return self.weight * self.quantity


@dataclass
class Manifest:
    header: list
    rows: list[ManifestRow] = field(default_factory=list)


def _cell(cells: list, index: int):
    return cells[index] if 0 <= index < len(cells) else ''


def parse_row(cells, row_index: int, columns: ManifestColumns = ManifestColumns()) -> ManifestRow:
    cells = ['' if _is_blank(c) else c for c in cells]
    width = max(columns.passthrough_width, len(cells))
    cells = cells + [''] * (width - len(cells))

    images = tuple(
        to_text(_cell(cells, i)) for i in columns.images
        if to_text(_cell(cells, i)) and to_text(_cell(cells, i)) != 'N/A'
    )
    asin_raw = to_text(_cell(cells, columns.asin))
    return ManifestRow(
        row_index=row_index,
        cells=tuple(cells),
        sku=to_text(_cell(cells, columns.sku)),
        title=to_text(_cell(cells, columns.title)),
        description=to_text(_cell(cells, columns.description)),
        asin=asin_raw.lower(),
        asin_raw=asin_raw,
        ean=to_text(_cell(cells, columns.ean)),
        brand=to_text(_cell(cells, columns.brand)),
        subcategory=to_text(_cell(cells, columns.subcategory)),
        images=images,
        quantity=to_quantity(_cell(cells, columns.quantity)),
        condition=to_text(_cell(cells, columns.condition)),
        weight=to_number(_cell(cells, columns.weight)),
        rrp=to_number(_cell(cells, columns.rrp)),
        retail_total=to_number(_cell(cells, columns.retail_total)),
    )


def parse_manifest(rows, columns: ManifestColumns = ManifestColumns()) -> Manifest:
    """Header row first, then data rows. Fully empty rows are dropped."""
    rows = [list(r) for r in rows]
    if not rows:
        return Manifest(header=[''] * columns.passthrough_width)
    header = [to_text(h) for h in rows[0]]
    header = header + [''] * (columns.passthrough_width - len(header))
    parsed = []
    for cells in rows[1:]:
        if all(_is_blank(c) for c in cells):
            continue
        parsed.append(parse_row(cells, len(parsed), columns))
    return Manifest(header=header, rows=parsed)


# ── Workbook reading ────────────────────────────────────────────────────


def sheet_names(path: Path) -> list[str]:
    with pd.ExcelFile(path) as xls:
        return [str(name) for name in xls.sheet_names]


def find_sheet(names: list[str], keywords: tuple) -> str | None:
    for name in names:
        lowered = name.lower()
        if any(kw in lowered for kw in keywords):
            return name
    return None


def read_sheet_rows(path: Path, sheet_name=0) -> list[list]:
    df = pd.read_excel(path, sheet_name=sheet_name, header=None, dtype=object)
    df = df.astype(object).where(pd.notna(df), '')
    return df.values.tolist()


def read_sheet_records(path: Path, sheet_name=0) -> list[dict]:
    df = pd.read_excel(path, sheet_name=sheet_name, dtype=object)
    df = df.astype(object).where(pd.notna(df), None)
    return df.to_dict('records')


def load_manifest(path: Path, columns: ManifestColumns = ManifestColumns()) -> Manifest:
    return parse_manifest(read_sheet_rows(path, 0), columns)
