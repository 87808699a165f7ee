"""
Ledger client backends.
"""
