"""Spreadsheet to SureCart product, collection and media sync."""

__version__ = "0.1.0"
