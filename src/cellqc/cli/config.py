"""
Configuration file support for the cellqc CLI.

Supports YAML and JSON config files with CLI argument override.

Example (qc.yaml):

    counts: data/counts.csv
    cell_metadata: data/cells.csv
    output: results/qc
    lower_detection_limit: 0
    mad_multiplier: 5
    controls:
      ERCC: "ERCC-"
      MT: "MT-"
    filtering:
      enabled: true
      min_cells: 3
      drop_controls: false
    normalization:
      method: log_cpm
      prior_count: 1.0
"""

import json
from argparse import Namespace
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml


@dataclass
class FilterConfig:
    """Cell and feature filtering configuration."""
    enabled: bool = False
    exclude_columns: List[str] = field(default_factory=lambda: ["filter_on_depth", "filter_on_coverage"])
    min_depth: Optional[float] = None
    min_coverage: Optional[int] = None
    max_pct_controls: Optional[float] = None
    min_cells: int = 1
    min_mean_exprs: Optional[float] = None
    drop_controls: bool = False


@dataclass
class NormalizationConfig:
    """Normalization configuration (applied after filtering)."""
    method: Optional[str] = None
    prior_count: float = 1.0


@dataclass
class QCConfig:
    """
    Complete configuration schema for the cellqc qc command.

    Mirrors the CLI argument structure for consistency.
    """
    counts: Optional[Path] = None
    cell_metadata: Optional[Path] = None
    feature_metadata: Optional[Path] = None
    output: Optional[Path] = None
    lower_detection_limit: float = 0.0
    mad_multiplier: float = 5.0
    controls: Dict[str, str] = field(default_factory=dict)
    report: bool = False
    filtering: FilterConfig = field(default_factory=FilterConfig)
    normalization: NormalizationConfig = field(default_factory=NormalizationConfig)


VALID_NORMALIZATION_METHODS = ("log_cpm", "size_factor")

# (section or None for top level, config key) -> argparse dest
_ARG_MAPPING = {
    (None, "counts"): "counts",
    (None, "cell_metadata"): "cell_metadata",
    (None, "feature_metadata"): "feature_metadata",
    (None, "output"): "output",
    (None, "lower_detection_limit"): "lower_detection_limit",
    (None, "mad_multiplier"): "mad_multiplier",
    (None, "report"): "report",
    ("filtering", "enabled"): "filter",
    ("filtering", "exclude_columns"): "exclude_columns",
    ("filtering", "min_depth"): "min_depth",
    ("filtering", "min_coverage"): "min_coverage",
    ("filtering", "max_pct_controls"): "max_pct_controls",
    ("filtering", "min_cells"): "min_cells",
    ("filtering", "min_mean_exprs"): "min_mean_exprs",
    ("filtering", "drop_controls"): "drop_controls",
    ("normalization", "method"): "normalize",
    ("normalization", "prior_count"): "prior_count",
}

_PATH_ARGS = {"counts", "cell_metadata", "feature_metadata", "output"}

# Flags whose dest differs from the flag name
_FLAG_DESTS = {
    "no_filter": "filter",
    "c": "config",
    "o": "output",
}


def load_config(config_path: Path) -> Dict[str, Any]:
    """
    Load configuration from YAML or JSON file.

    Parameters:
        config_path: Path to config file (.yaml, .yml, or .json)

    Returns:
        Dictionary with configuration values

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If file format is unsupported or invalid
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    suffix = config_path.suffix.lower()
    if suffix not in ('.yaml', '.yml', '.json'):
        raise ValueError(f"Unsupported config format: {suffix}. Use .yaml, .yml, or .json")

    try:
        with open(config_path, 'r') as f:
            if suffix == '.json':
                config = json.load(f)
            else:
                config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in config file: {e}") from e
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in config file: {e}") from e

    if config is None:
        return {}
    if not isinstance(config, dict):
        raise ValueError("Config file must contain a dictionary/mapping at top level")
    return config


def validate_config(config: Dict[str, Any]) -> None:
    """
    Validate configuration structure and values.

    Raises:
        ValueError: On unknown keys or invalid values
    """
    known_top = {f.name for f in fields(QCConfig)}
    unknown = sorted(set(config) - known_top)
    if unknown:
        raise ValueError(f"Unknown config keys: {unknown}. Valid keys: {sorted(known_top)}")

    for section, schema in (("filtering", FilterConfig), ("normalization", NormalizationConfig)):
        values = config.get(section)
        if values is None:
            continue
        if not isinstance(values, dict):
            raise ValueError(f"Config section '{section}' must be a mapping")
        known = {f.name for f in fields(schema)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise ValueError(f"Unknown keys in '{section}': {unknown}. Valid keys: {sorted(known)}")

    mad_multiplier = config.get("mad_multiplier")
    if mad_multiplier is not None and (not isinstance(mad_multiplier, (int, float)) or mad_multiplier <= 0):
        raise ValueError(f"mad_multiplier must be a positive number, got: {mad_multiplier}")

    controls = config.get("controls")
    if controls is not None:
        if not isinstance(controls, dict) or not all(isinstance(v, str) for v in controls.values()):
            raise ValueError("controls must map a control set name to a feature ID prefix")

    method = (config.get("normalization") or {}).get("method")
    if method is not None and method not in VALID_NORMALIZATION_METHODS:
        raise ValueError(
            f"Invalid normalization method '{method}'. "
            f"Choose from: {', '.join(VALID_NORMALIZATION_METHODS)}"
        )


def explicit_args(cli_args: Optional[List[str]]) -> set:
    """argparse dests of the options that appear on the command line."""
    explicit = set()
    for arg in cli_args or []:
        if arg.startswith('--'):
            name = arg[2:].split('=', 1)[0].replace('-', '_')
        elif arg.startswith('-') and len(arg) == 2:
            name = arg[1]
        else:
            continue
        explicit.add(_FLAG_DESTS.get(name, name))
    return explicit


def merge_config_with_args(config: Dict[str, Any], args: Namespace, cli_args: Optional[List[str]] = None) -> Namespace:
    """
    Merge config file values with CLI arguments.

    Priority (highest to lowest):
    1. Explicitly provided CLI arguments
    2. Config file values
    3. CLI argument defaults

    Parameters:
        config: Configuration dictionary from load_config()
        args: Parsed CLI arguments
        cli_args: Raw CLI arguments (for detecting explicit values).
            If None, all args are treated as defaults.

    Returns:
        New Namespace with merged values
    """
    explicit = explicit_args(cli_args)
    merged = Namespace(**vars(args))

    for (section, key), dest in _ARG_MAPPING.items():
        source = config if section is None else (config.get(section) or {})
        if key not in source or dest in explicit:
            continue
        value = source[key]
        if value is not None and dest in _PATH_ARGS:
            value = Path(value)
        setattr(merged, dest, value)

    # --control-prefix values add to (and override by name) the config's sets
    if config.get("controls"):
        combined = dict(config["controls"])
        combined.update(getattr(merged, "control_prefix", None) or {})
        merged.control_prefix = combined

    return merged
