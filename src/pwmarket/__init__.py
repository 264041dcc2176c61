"""
pwmarket: marketplace listing aggregation, caching and pagination engine
"""
__version__ = "0.1.0"
