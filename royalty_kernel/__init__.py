"""
Royalty Kernel - cashflow ledger and rights-conflict resolution.

A balance-chained, append-only ledger per productora with:
- Serialized posting per productora (row locks)
- Time-bounded phonogram ownership intervals
- Multi-party conflict resolution over disputed ownership
- Audit entries written in the same transaction as every mutation
"""

__version__ = "0.1.0"
