"""stocktake: flexible column mapping and running aggregation for inventory spreadsheets."""

__version__ = "0.3.0"
