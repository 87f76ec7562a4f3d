"""Family Stars progression ledger and celebration pipeline."""

__version__ = "1.0.0"
