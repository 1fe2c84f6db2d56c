"""
Core services: balance source, balance cache, access evaluation,
trade confirmation and notification fan-out.
"""
