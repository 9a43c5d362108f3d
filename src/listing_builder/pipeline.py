"""
Listing pipeline.

ListingService owns the category classifier and exposes three operations:

    classify(title)            -> CategoryMatch
    run_pipeline(request, cb)  -> SuccessEvent | ErrorEvent
    query_cache_status()       -> CacheStatusEvent

A run links manifest SKUs to invoice prices, allocates cost and shipping,
classifies titles and synthesizes both output documents from the same rows.
Progress goes to the callback; the run ends with exactly one terminal event.
`submit` runs the pipeline on a single background worker so runs never
overlap and the classifier index is only touched by that worker.
"""

from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .allocation import AllocationEngine, date_prefix
from .classifier import DEFAULT_CATEGORY_ID, CategoryClassifier, CategoryMatch
from .config import default_config
from .invoices import InvoiceDocument, InvoiceLinker, apply_shipping_discount, total_shipping
from .manifest import Manifest, find_sheet, read_sheet_records, read_sheet_rows, sheet_names
from .postage import parse_postage_rates
from .progress import (
    CacheStatusEvent,
    ErrorEvent,
    EventCallback,
    LinkSummaryEvent,
    ProgressReporter,
    SuccessEvent,
)
from .synthesis import DocumentSynthesizer, ListingBundle
from .workbook import write_artifacts

TAXONOMY_SHEET_KEYWORDS = ('category', 'map')
POSTAGE_SHEET_KEYWORDS = ('postage',)


class PipelineInputError(Exception):
    pass


@dataclass
class PipelineRequest:
    manifest: Optional[Manifest]
    invoices: list[InvoiceDocument]
    date: str
    taxonomy_rows: Optional[list[dict]] = None
    postage_rows: Optional[list[list]] = None
    shipping_discount: float = 0.0
    output_dir: Optional[Path] = None
    # workbook the manifest came from; searched for embedded category/postage sheets
    manifest_path: Optional[Path] = None
    notes: list[str] = field(default_factory=list)

    def validate(self):
        missing = []
        if self.manifest is None:
            missing.append('manifest')
        if not self.invoices:
            missing.append('at least one invoice')
        if not self.date:
            missing.append('date')
        if missing:
            raise PipelineInputError(f"Missing required input: {', '.join(missing)}")
        try:
            date_prefix(self.date)
        except ValueError:
            raise PipelineInputError(f"Date must be YYYY-MM-DD, got '{self.date}'")


class ListingService:

    def __init__(self, config: Optional[dict] = None, classifier: Optional[CategoryClassifier] = None):
        self.config = config or default_config()
        self.classifier = classifier or CategoryClassifier()
        self._executor: Optional[ThreadPoolExecutor] = None

    # ── operations ──────────────────────────────────────────────────────

    def classify(self, title) -> CategoryMatch:
        return self.classifier.match(title)

    def query_cache_status(self) -> CacheStatusEvent:
        status = self.classifier.status()
        return CacheStatusEvent(
            count=status.count if status.is_initialized else 0,
            build_seconds=status.build_seconds,
            is_cached=status.is_initialized,
            is_new_upload=False,
        )

    def run_pipeline(self, request: PipelineRequest, on_event: Optional[EventCallback] = None):
        reporter = ProgressReporter(on_event)
        try:
            request.validate()
        except PipelineInputError as e:
            event = ErrorEvent(str(e))
            reporter.emit(event)
            return event

        try:
            bundle = self.build_listing(request, reporter)
            output_dir = request.output_dir or self.config['_resolved_paths']['output_dir']
            reporter.status("Writing output files...")
            listing_path, csv_path = write_artifacts(
                bundle, output_dir, self.config['output']['write_formulas']
            )
        except Exception as e:
            event = ErrorEvent(str(e))
            reporter.emit(event)
            return event

        event = SuccessEvent(
            message=self._summary(bundle, request),
            listing_path=str(listing_path),
            csv_path=str(csv_path),
            item_count=len(bundle.rows),
            category_match_count=bundle.category_match_count,
        )
        reporter.emit(event)
        return event

    def submit(self, request: PipelineRequest, on_event: Optional[EventCallback] = None) -> Future:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='listing-pipeline')
        return self._executor.submit(self.run_pipeline, request, on_event)

    def shutdown(self):
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    # ── run stages ──────────────────────────────────────────────────────

    def build_listing(self, request: PipelineRequest, reporter: Optional[ProgressReporter] = None) -> ListingBundle:
        """Everything up to (not including) writing files."""
        reporter = reporter or ProgressReporter()
        request.validate()
        progress = self.config['progress']
        columns = self.config['_columns']

        invoices = apply_shipping_discount(request.invoices, request.shipping_discount)

        self._prepare_classifier(request, reporter)
        postage_tiers = self._load_postage(request, reporter)

        rows = request.manifest.rows
        reporter.status("Searching invoices for SKU prices...")
        linker = InvoiceLinker(invoices)
        links = linker.link_all((r.sku for r in rows), reporter, progress['link_interval'])
        reporter.emit(LinkSummaryEvent(links=tuple(links.values()), total_shipping=total_shipping(invoices)))

        engine = AllocationEngine(
            classifier=self.classifier,
            postage_tiers=postage_tiers,
            cost_group_by=self.config['allocation']['cost_group_by'],
            title_max_length=self.config['listing']['title_max_length'],
        )
        allocated = engine.allocate(rows, links, request.date, reporter, progress['row_interval'])

        synthesizer = DocumentSynthesizer(columns, self.config['listing'])
        bundle = synthesizer.synthesize(
            request.manifest.header, allocated, date_prefix(request.date),
            postage_tiers, reporter, progress['row_interval'],
        )
        bundle.postage_source = (
            f"Postage rates from uploaded table ({len(postage_tiers)} tiers)."
            if postage_tiers else "Using default postage rates."
        )
        return bundle

    def _prepare_classifier(self, request: PipelineRequest, reporter: ProgressReporter):
        taxonomy_rows = request.taxonomy_rows
        if taxonomy_rows is None and not self.classifier.is_initialized and request.manifest_path:
            taxonomy_rows = self._embedded_taxonomy(request, reporter)

        if taxonomy_rows is not None:
            reporter.status("Loading & indexing category map...")

            def notify(status):
                reporter.emit(CacheStatusEvent(
                    count=status.count,
                    build_seconds=status.build_seconds,
                    is_cached=status.is_initialized,
                    is_new_upload=True,
                ))

            status = self.classifier.build(taxonomy_rows, notify)
            if not status.is_initialized:
                request.notes.append("Category map had no usable rows; using default category.")
                reporter.status("Category map had no usable rows; using default category.")
        elif self.classifier.is_initialized:
            reporter.emit(self.query_cache_status())

    def _embedded_taxonomy(self, request: PipelineRequest, reporter: ProgressReporter):
        try:
            name = find_sheet(sheet_names(request.manifest_path), TAXONOMY_SHEET_KEYWORDS)
            if name is None:
                return None
            return read_sheet_records(request.manifest_path, name)
        except Exception as e:
            reporter.status(f"Could not read embedded category map ({e}); using default category.")
            return None

    def _load_postage(self, request: PipelineRequest, reporter: ProgressReporter):
        rows = request.postage_rows
        if rows is None and request.manifest_path:
            try:
                name = find_sheet(sheet_names(request.manifest_path), POSTAGE_SHEET_KEYWORDS)
                if name is not None:
                    rows = read_sheet_rows(request.manifest_path, name)
            except Exception as e:
                reporter.status(f"Could not read embedded postage table ({e}); using default rates.")
                rows = None
        if rows is None:
            return None

        reporter.status("Loading postage rates...")
        tiers = parse_postage_rates(rows)
        if not tiers:
            reporter.status("Postage table had no usable tiers; using default rates.")
            return None
        return tiers

    def _summary(self, bundle: ListingBundle, request: PipelineRequest) -> str:
        status = self.classifier.status()
        if status.is_initialized:
            category_info = f" Categories matched from {status.count} options."
        else:
            category_info = f" Using default category {DEFAULT_CATEGORY_ID}."
        return (
            f"Success! Generated {bundle.listing_filename} and {bundle.csv_filename} "
            f"with {len(bundle.rows)} items ({bundle.category_match_count} category matches)!"
            f"{category_info} {bundle.postage_source}"
        )

