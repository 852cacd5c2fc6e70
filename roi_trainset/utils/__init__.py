"""General utilities used across roi_trainset.

Exports helpers for HDF5 output, logging setup and CLI parameter parsing.
"""

from .h5 import atomic_h5, encode_attr, set_attrs, write_rows
from .logging_utils import configure_logging
from .params import parse_sigmas, validate_fraction, validate_positive_int

__all__ = [
    "atomic_h5",
    "encode_attr",
    "set_attrs",
    "write_rows",
    "configure_logging",
    "parse_sigmas",
    "validate_fraction",
    "validate_positive_int",
]
