"""
Bank transaction watcher.

Polls financial-data sources for transactions, stores the ones it has
not seen before and notifies the operator about each of them once.
"""

__version__ = "0.1.0"
