"""
Scheduler package for alumni change tracking.

This package contains:
- Snapshot differencing of alumni records
- The monthly refresh/compare/notify/rotate cycle
- Subscription control of the recurring timer
- Email composition and delivery
"""

__version__ = "1.0.0"
