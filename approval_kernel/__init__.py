"""
Approval Kernel

Sequential, role-based approval workflows for asset management:
- Ordered multi-step sign-off chains routed through organizational roles
- Rejection push-back to the previous approver
- Deadline-driven auto-escalation
- Exactly-once downstream side effect on completion
- Append-only audit trail of every transition
"""

__version__ = "0.1.0"
