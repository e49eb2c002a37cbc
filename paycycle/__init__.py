"""
PayCycle - Monthly payroll computation and review engine.
"""

__version__ = "0.1.0"
