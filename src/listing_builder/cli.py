"""
Listing Builder CLI

Turns a warehouse manifest plus supplier invoice PDFs into an enriched listing
workbook (LISTING_<ddmmyy>.xlsx) and an eBay draft upload CSV
(ebay_upload_<ddmmyy>.csv).

Usage:
    listing-builder --config clients/default/config.yaml --manifest manifest.xlsx \\
        --invoice inv1.pdf --invoice inv2.pdf --date 2024-03-07
    listing-builder --config clients/default/config.yaml --manifest manifest.xlsx \\
        --invoice inv1.pdf --date 2024-03-07 --taxonomy categories.xlsx --postage postage.xlsx
    listing-builder --config clients/default/config.yaml ... --shipping-discount 3.50 --output-dir /tmp
"""

import argparse
import sys
import time
from pathlib import Path

from .config import ConfigError, load_config
from .invoice_reader import read_invoices
from .manifest import find_sheet, load_manifest, read_sheet_records, read_sheet_rows, sheet_names
from .pipeline import TAXONOMY_SHEET_KEYWORDS, ListingService, PipelineRequest
from .progress import (
    CacheStatusEvent,
    ErrorEvent,
    LinkSummaryEvent,
    ProgressEvent,
)


def print_event(event):
    if isinstance(event, ProgressEvent):
        print(f"  {event.message}")
    elif isinstance(event, CacheStatusEvent):
        if event.is_new_upload:
            print(f"  Category index built: {event.count:,} categories in {event.build_seconds * 1000:.0f}ms")
        elif event.is_cached:
            print(f"  Category index reused from cache: {event.count:,} categories")
        else:
            print("  No category index cached")
    elif isinstance(event, LinkSummaryEvent):
        found = sum(1 for link in event.links if link.found)
        print(f"  Invoice prices found: {found:,} of {len(event.links):,} SKUs "
              f"(total shipping £{event.total_shipping:,.2f})")
    elif isinstance(event, ErrorEvent):
        print(f"  ERROR: {event.error}", file=sys.stderr)


def load_taxonomy_rows(path: Path):
    try:
        name = find_sheet(sheet_names(path), TAXONOMY_SHEET_KEYWORDS) or 0
        return read_sheet_records(path, name)
    except Exception as e:
        print(f"  WARNING: could not read category map {path.name} ({e}); using default category", file=sys.stderr)
        return None


def load_postage_rows(path: Path):
    try:
        return read_sheet_rows(path, 0)
    except Exception as e:
        print(f"  WARNING: could not read postage table {path.name} ({e}); using default rates", file=sys.stderr)
        return None


def main(config: dict, manifest_path: str, invoice_paths: list[str], date: str,
         shipping_discount: float = 0.0) -> int:
    paths = config['_resolved_paths']
    client_name = config['client']['name']

    t_start = time.perf_counter()

    print("=" * 70)
    print(f"{client_name} LISTING BUILDER")
    print("=" * 70)

    print("\nLoading inputs...")
    manifest_path = Path(manifest_path).resolve()
    if not manifest_path.exists():
        raise ConfigError(f"Manifest not found: {manifest_path}")
    manifest = load_manifest(manifest_path, config['_columns'])
    print(f"  Manifest rows: {len(manifest.rows):,}")

    invoices = read_invoices(invoice_paths)
    print(f"  Invoices: {len(invoices)}")
    for inv in invoices:
        print(f"    {inv.filename:40s} shipping £{inv.shipping_total:>8.2f}  "
              f"date {inv.invoice_date or '-':10s}  vendor {inv.vendor_number or '-'}")

    taxonomy_rows = load_taxonomy_rows(paths['taxonomy']) if paths['taxonomy'] else None
    postage_rows = load_postage_rows(paths['postage_rates']) if paths['postage_rates'] else None

    request = PipelineRequest(
        manifest=manifest,
        invoices=invoices,
        date=date,
        taxonomy_rows=taxonomy_rows,
        postage_rows=postage_rows,
        shipping_discount=shipping_discount,
        output_dir=paths['output_dir'],
        manifest_path=manifest_path,
    )

    print("\nRunning pipeline...")
    service = ListingService(config)
    t_run = time.perf_counter()
    outcome = service.run_pipeline(request, print_event)
    t_run_end = time.perf_counter()

    if isinstance(outcome, ErrorEvent):
        return 1

    t_end = time.perf_counter()

    print(f"\n{'='*70}")
    print("LISTING COMPLETE")
    print(f"{'='*70}")
    print(outcome.message)
    print(f"\nItems:             {outcome.item_count:,}")
    print(f"Category matches:  {outcome.category_match_count:,}")
    for note in request.notes:
        print(f"Note: {note}")
    print(f"\nTiming: pipeline {t_run_end - t_run:.1f}s, total {t_end - t_start:.1f}s")
    print(f"Listing saved to: {outcome.listing_path}")
    print(f"CSV saved to:     {outcome.csv_path}")
    return 0


def run(argv=None):
    parser = argparse.ArgumentParser(
        description='Listing Builder: cost, categorise and export manifest lots for eBay'
    )
    parser.add_argument('--config', required=True, help='Path to client config YAML')
    parser.add_argument('--manifest', required=True, help='Manifest workbook (XLSX)')
    parser.add_argument('--invoice', action='append', required=True, dest='invoices',
                        help='Supplier invoice PDF (repeat for several invoices)')
    parser.add_argument('--date', required=True, help='Listing date, YYYY-MM-DD')
    parser.add_argument('--taxonomy', default=None, help='Override category map workbook from config')
    parser.add_argument('--postage', default=None, help='Override postage rate workbook from config')
    parser.add_argument('--shipping-discount', type=float, default=0.0,
                        help='Shipping discount split equally across invoices')
    parser.add_argument('--output-dir', default=None, help='Override output directory from config')
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config, args.output_dir, args.taxonomy, args.postage)
        code = main(config, args.manifest, args.invoices, args.date, args.shipping_discount)
    except (ConfigError, FileNotFoundError) as e:
        print(f"ERROR: {e}")
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    run()
