"""Library-size normalization for count data."""

from cellqc.stats.normalization import (
    library_sizes,
    cpm,
    log_cpm,
    size_factors,
    normalize,
    LogCPMNormalizer,
)

__all__ = [
    'library_sizes',
    'cpm',
    'log_cpm',
    'size_factors',
    'normalize',
    'LogCPMNormalizer',
]
