from .allocation import AllocatedRow, AllocationEngine, allocate_costs, allocate_shipping, date_prefix
from .classifier import DEFAULT_CATEGORY_ID, CategoryClassifier, CategoryMatch, TaxonomyNode
from .config import ConfigError, load_config
from .invoices import InvoiceDocument, InvoiceLink, InvoiceLinker
from .manifest import ManifestColumns, ManifestRow, parse_manifest
from .pipeline import ListingService, PipelineInputError, PipelineRequest
from .postage import DEFAULT_POSTAGE_TABLE, PostageTier
from .synthesis import DocumentSynthesizer, FormulaCell, ListingBundle
from .tokenizer import tokenize

__version__ = "0.1.0"
