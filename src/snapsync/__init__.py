"""
snapsync: eventually consistent replication of a relational source table
into a JSON snapshot table, by polling.
"""

__version__ = "1.0.0"
