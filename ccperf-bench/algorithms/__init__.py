"""
Pacing and population algorithms.
"""
