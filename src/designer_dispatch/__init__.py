"""Task assignment and credit allocation engine for the photo-editing marketplace."""

__version__ = "0.1.0"
