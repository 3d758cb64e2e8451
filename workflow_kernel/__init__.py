"""
Workflow Kernel

Shared machinery for the approval pipelines of the healthcare network:
- Declarative state graphs per workflow kind
- Role-gated, precondition-gated transitions
- Append-only, hash-chained audit trail
- Double verification of monetary values
"""

__version__ = "0.1.0"
