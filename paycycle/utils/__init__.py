"""
PayCycle - Utilities Package
"""
