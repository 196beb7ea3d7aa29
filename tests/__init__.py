"""
Test suite for pgpatch.

Unit tests run against in-memory catalog fakes; no live database is needed.
"""
