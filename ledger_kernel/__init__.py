"""
Ledger Kernel

A multi-tenant double-entry ledger posting engine with:
- Balanced, immutable journal entries
- Void by mirror reversal
- Fiscal period gating
- A rebuildable per-account, per-period balance cache
- Read-only financial reports
"""

__version__ = "0.1.0"
