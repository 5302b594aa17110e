"""Serum Order Indexer - order lifecycle history from Serum DEX instructions."""

__version__ = "0.1.0"
