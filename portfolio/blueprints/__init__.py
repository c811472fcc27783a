"""
Portfolio Platform
Blueprint registry.
"""
