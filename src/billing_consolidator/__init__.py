"""billing-consolidator — Normalize energy-billing spreadsheet exports into one canonical table."""

__version__ = "0.3.0"
