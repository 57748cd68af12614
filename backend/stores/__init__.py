"""
Store catalog: record types, CSV parsing, filters and demographics summaries.
"""
