"""
RevRec Kernel

Persistence, domain values and audit infrastructure for contract-based
revenue recognition:
- Append-only contract versions
- Immutable posted recognition history
- Period control
- Full auditability via hash chain
"""

__version__ = "0.1.0"
