"""
Impound Kernel - inspection/release reconciliation.

Tracks the boxes impounded per inspection and applies partial releases
against that quantity with:
- Pure release decisions (quantity ledger)
- Conflict-checked, atomic release commits
- Append-only release audit records
- Operator confirmation before any release
- Best-effort SMS notification that never rolls back a commit
"""

__version__ = "0.1.0"
