"""Chunked compositing and registration tools for gridded earth data."""

__version__ = "0.4.0"
