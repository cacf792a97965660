"""
UltraNote sync: one shared JSON document, reconciled record by record.

Clients hold the whole document in memory, write it back after every change
and poll for changes made elsewhere. The server merges every write into the
document on disk.
"""

__version__ = "0.1.0"
