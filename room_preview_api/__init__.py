"""Room preview service: place a catalog product inside a shopper's room photo."""

__version__ = "0.1.0"
