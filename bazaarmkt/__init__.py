"""bazaarMKT order financial settlement service."""

__version__ = "1.0.0"
