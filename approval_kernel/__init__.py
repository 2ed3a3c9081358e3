"""
Approval Kernel

The core of the workflow approval engine:
- Ordered stage routing with a single active stage per request
- Append-only approval ledger and audit trail
- Department/role document visibility
- Collision-free, human-readable sequence numbers
"""

__version__ = "0.1.0"
