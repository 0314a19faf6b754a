"""
aiguard - reliability and caching layer for AI completion calls.
"""

__version__ = "0.1.0"
