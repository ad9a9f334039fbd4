"""
Command-line tools for polydb.
"""
