"""Pool-based prediction market settlement engine and oracle worker."""

__version__ = "0.1.0"
