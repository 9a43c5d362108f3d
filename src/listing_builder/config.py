"""
Client configuration.

One YAML file per client (clients/<name>/config.yaml) holding manifest column
positions, output paths, listing constants and progress intervals. Paths are
resolved relative to the config file.
"""

import sys
from pathlib import Path

import yaml

from .allocation import COST_GROUP_KEYS
from .manifest import ManifestColumns
from .synthesis import DEFAULT_LISTING_SETTINGS


class ConfigError(Exception):
    pass


ALIASES = {
    'paths': {'category_map': 'taxonomy', 'postage': 'postage_rates'},
    'columns': {'lot_sku': 'sku', 'accounting_id': 'asin', 'qty': 'quantity'},
    'allocation': {'group_by': 'cost_group_by'},
}

DEFAULTS = {
    'allocation': {'cost_group_by': 'sku'},
    'listing': {'title_max_length': 70},
    'progress': {'link_interval': 20, 'row_interval': 50},
    'output': {'write_formulas': True},
}

OPTIONAL_PATHS = ['taxonomy', 'postage_rates']
REQUIRED_COLUMNS = ['sku', 'title', 'quantity', 'weight', 'rrp']


def _apply_aliases(config: dict) -> list[str]:
    warnings = []
    for section, mappings in ALIASES.items():
        if not isinstance(config.get(section), dict):
            continue
        for old_key, new_key in mappings.items():
            if old_key in config[section] and new_key not in config[section]:
                config[section][new_key] = config[section].pop(old_key)
                warnings.append(
                    f"DEPRECATION: '{section}.{old_key}' renamed to "
                    f"'{section}.{new_key}'. Update your config."
                )
    return warnings


def _apply_defaults(config: dict):
    for section, values in DEFAULTS.items():
        config.setdefault(section, {})
        if config[section] is None:
            config[section] = {}
        for key, value in values.items():
            config[section].setdefault(key, value)
    config.setdefault('columns', {})
    if config['columns'] is None:
        config['columns'] = {}
    for key, value in DEFAULT_LISTING_SETTINGS.items():
        config['listing'].setdefault(key, value)


def _validate_columns(columns: dict) -> ManifestColumns:
    for key, value in columns.items():
        values = value if key == 'images' else [value]
        if key == 'images' and not isinstance(value, list):
            raise ConfigError("'columns.images' must be a list of column positions")
        for v in values:
            if not isinstance(v, int) or isinstance(v, bool) or v < 0:
                raise ConfigError(f"'columns.{key}' must be a non-negative column position, got {v!r}")
    try:
        parsed = ManifestColumns.from_config(columns)
    except TypeError as e:
        raise ConfigError(f"Invalid column mapping: {e}")

    width = parsed.passthrough_width
    for key in ('quantity', 'weight', 'currency', 'rrp', 'retail_total'):
        if getattr(parsed, key) >= width:
            raise ConfigError(
                f"'columns.{key}' ({getattr(parsed, key)}) must fall inside the first "
                f"{width} passthrough columns"
            )
    return parsed


def load_config(config_path, output_dir_override: str = None,
                taxonomy_override: str = None, postage_override: str = None) -> dict:
    config_path = Path(config_path).resolve()
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Config file is not valid YAML: {e}")

    if not isinstance(config, dict):
        raise ConfigError(f"Config file must contain a mapping: {config_path}")

    alias_warnings = _apply_aliases(config)
    for w in alias_warnings:
        print(f"  {w}", file=sys.stderr)

    base_dir = config_path.parent

    required_sections = ['client', 'paths']
    for section in required_sections:
        if not isinstance(config.get(section), dict):
            raise ConfigError(f"Missing required config section: '{section}'")

    if 'name' not in config['client']:
        raise ConfigError("Missing required client field: 'client.name'")
    if 'output_dir' not in config['paths']:
        raise ConfigError("Missing required path: 'paths.output_dir'")

    _apply_defaults(config)

    unknown_columns = [k for k in config['columns'] if k not in ManifestColumns.__dataclass_fields__]
    if unknown_columns:
        raise ConfigError(f"Unknown column mapping(s): {', '.join(sorted(unknown_columns))}")
    config['_columns'] = _validate_columns(config['columns'])

    if config['allocation']['cost_group_by'] not in COST_GROUP_KEYS:
        raise ConfigError(
            f"'allocation.cost_group_by' must be one of {', '.join(COST_GROUP_KEYS)}, "
            f"got '{config['allocation']['cost_group_by']}'"
        )

    for key in ('link_interval', 'row_interval'):
        value = config['progress'][key]
        if not isinstance(value, int) or value <= 0:
            raise ConfigError(f"'progress.{key}' must be a positive integer")

    resolved = {'output_dir': (base_dir / config['paths']['output_dir']).resolve()}
    for key in OPTIONAL_PATHS:
        value = config['paths'].get(key)
        resolved[key] = (base_dir / value).resolve() if value else None

    if output_dir_override:
        resolved['output_dir'] = Path(output_dir_override).resolve()
    if taxonomy_override:
        resolved['taxonomy'] = Path(taxonomy_override).resolve()
    if postage_override:
        resolved['postage_rates'] = Path(postage_override).resolve()

    for key in OPTIONAL_PATHS:
        if resolved[key] is not None and not resolved[key].exists():
            raise ConfigError(f"File not found: {resolved[key]} (from paths.{key})")

    config['_resolved_paths'] = resolved
    return config


def default_config() -> dict:
    """Config used when no file is given: built-in columns, ./output."""
    config = {'client': {'name': 'Default'}, 'paths': {'output_dir': 'output'}}
    _apply_defaults(config)
    config['_columns'] = ManifestColumns()
    config['_resolved_paths'] = {
        'output_dir': Path('output').resolve(),
        'taxonomy': None,
        'postage_rates': None,
    }
    return config
