"""On-device analytics for society finance and engagement records."""

__version__ = "0.1.0"
