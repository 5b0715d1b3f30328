"""
Parcel sync engine.

Reconciles invoices and return notes gathered by the collection process
with a local SQLite store and a remote document store.
"""

__version__ = "0.1.0"
