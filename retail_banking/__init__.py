"""
Retail Banking Service

Customer self-service (accounts, deposits, transfers, loan applications,
statements) and an administrative back office, built on a pluggable data
store with Decimal money and a hash-chained audit trail.
"""

__version__ = "1.0.0"
