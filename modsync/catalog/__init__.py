"""Catalogs — artifact headers, CSV tables, and generation from the installed tree.

The four artifact catalogs and the file inventory are the only interface
downstream target adapters read.
"""
