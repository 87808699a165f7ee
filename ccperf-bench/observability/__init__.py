"""
Commit observation and run annotation.
"""
