"""
Command-line tools for EntBase.
"""
