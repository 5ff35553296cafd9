"""
LogiBrew Decision Chain.

Tamper-evident, append-only decision logs for AI-assisted logistics
decisions, and the dashboard metrics derived from them.
"""

__version__ = "1.0.0"
