"""
BGF Dashboard
Blueprint registry.
"""
