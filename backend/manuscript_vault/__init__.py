"""Manuscript uploads with a quota-managed blob store."""
