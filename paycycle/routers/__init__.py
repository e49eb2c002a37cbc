"""
PayCycle - Routers Package

FastAPI route handlers.

Routers:
- payroll: sync, runs, review tasks, run status, adjustment import
"""

from paycycle.routers import payroll

__all__ = ["payroll"]
