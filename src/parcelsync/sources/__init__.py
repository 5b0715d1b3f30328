"""
Candidate sources supplying raw records to the sync engine.
"""

from .file_source import JsonFileSource, parse_raw_record
from .synthetic_source import SyntheticSource

__all__ = ["JsonFileSource", "SyntheticSource", "parse_raw_record"]
