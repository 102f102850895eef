"""
analyzer_pprof — heuristic analysis of parsed Go runtime profiles.

Detectors are pure functions over an in-memory ``Profile``: overhead,
off-heap memory, lock contention, goroutines, allocation paths and
cross-profile correlation.
"""

__version__ = "0.1.0"
ANALYZER_VERSION = "v0"
PACKAGE_NAME = "analyzer_pprof"
SCHEMA_VERSION = "0.1"
