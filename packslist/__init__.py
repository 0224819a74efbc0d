"""PacksList local-delivery marketplace: search, privacy cache and location helpers."""

__version__ = "0.1.0"
