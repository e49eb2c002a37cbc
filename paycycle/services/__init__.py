"""
PayCycle - Services Package

Business logic services.
"""
