"""
Notes Kernel - financial document lifecycle engine

Credit Notes (CN) and Debit Notes (DN) for an insurance brokerage:
- Gapless, collision-free document numbers per (note type, year)
- Staged-rounding monetary breakdown and co-insurance splits
- Draft -> Approved -> Issued lifecycle with role-gated transitions
- Tamper-evident artifact binding and hash-chained audit trail
"""

__version__ = "0.1.0"
