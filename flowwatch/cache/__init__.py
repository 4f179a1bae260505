"""
Read-through caches for forecast series and return-period thresholds.
"""
