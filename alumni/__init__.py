"""
Alumni data package.

This package contains:
- Alumni, company and subscriber document models
- MongoDB access for the tracked collections
- Source feed refresh and alumni-to-company matching
"""
