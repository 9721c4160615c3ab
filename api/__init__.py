"""
FastAPI REST API for the alumni tracker.

This module provides:
- On-demand alumni snapshot comparison
- Subscription management for the monthly updates
- Health reporting
"""
