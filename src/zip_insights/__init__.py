"""ZIP code spatial index and cache-backed Census ACS fetch service."""

__version__ = "0.1.0"
