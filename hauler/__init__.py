"""Airgap content store: list, save, load, extract, copy and serve OCI layouts."""

__version__ = "0.1.0"