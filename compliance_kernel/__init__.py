"""
Compliance Kernel - controlled-substance compliance decision engine.

Decides, line by line, whether a supply-chain transaction involving
controlled substances may proceed:
- Time-aware substance classification across reclassification history
- Licence coverage matching with per-transaction and per-period caps
- Quantity, cumulative and frequency threshold enforcement
- Override approval state machine for blocked transactions
- Signed webhook notifications with retry and circuit breaking
"""

__version__ = "0.1.0"
