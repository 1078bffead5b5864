"""
Shared infrastructure: logging, database sessions and base exceptions.
"""
