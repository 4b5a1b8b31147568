"""
scorecache - cache-aside sports data aggregation.
"""
