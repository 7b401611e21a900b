"""Import 115 cloud shares into your own storage and keep them in sync."""

__version__ = "0.1.0"
