"""
Records, traces, report aggregation and export.
"""
