"""
Artifact writing: the listing workbook and the eBay CSV.

The workbook goes through pandas' xlsxwriter engine so formula cells keep
their computed result next to the formula text; readers that do not
recalculate still see the numbers.
"""

from pathlib import Path

import pandas as pd

from .synthesis import POSTAGE_SHEET_NAME, FormulaCell, ListingBundle


def _write_cell(ws, r: int, c: int, value, write_formulas: bool):
    if isinstance(value, FormulaCell):
        if write_formulas:
            ws.write_formula(r, c, f"={value.formula}", None, value.value)
        else:
            ws.write_number(r, c, value.value)
    elif isinstance(value, bool):
        ws.write_boolean(r, c, value)
    elif isinstance(value, (int, float)):
        ws.write_number(r, c, value)
    else:
        # strings go in verbatim: no formula, number or URL conversion
        ws.write_string(r, c, str(value))


def _write_sheet(ws, rows: list[list], write_formulas: bool = True):
    for r, row in enumerate(rows):
        for c, value in enumerate(row):
            if value == '' or value is None:
                continue
            _write_cell(ws, r, c, value, write_formulas)


def write_workbook(bundle: ListingBundle, path: Path, write_formulas: bool = True) -> Path:
    with pd.ExcelWriter(path, engine='xlsxwriter') as writer:
        for name, rows in ((bundle.sheet_name, bundle.listing_rows), (POSTAGE_SHEET_NAME, bundle.postage_rows)):
            _write_sheet(writer.book.add_worksheet(name), rows, write_formulas)
    return Path(path)


def write_artifacts(bundle: ListingBundle, output_dir: Path, write_formulas: bool = True) -> tuple[Path, Path]:
    """Write both files; the listing file is removed again if the CSV cannot be written."""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    listing_path = output_dir / bundle.listing_filename
    csv_path = output_dir / bundle.csv_filename

    write_workbook(bundle, listing_path, write_formulas)
    try:
        with open(csv_path, 'w', encoding='utf-8', newline='') as f:
            f.write(bundle.csv_text)
    except OSError:
        listing_path.unlink(missing_ok=True)
        raise
    return listing_path, csv_path
