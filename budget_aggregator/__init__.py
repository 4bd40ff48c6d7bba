"""
Budget Aggregator.

Merges expense tables from several Google Sheets into one master sheet,
using Claude to find the category/amount columns and merge similar categories.
"""

__version__ = "1.0.0"
