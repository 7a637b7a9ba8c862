"""Multi-account Google Tasks sync engine with aggregated views."""

__version__ = "0.1.0"
