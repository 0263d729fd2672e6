"""
Infrastructure module: database sessions and correlation IDs.
"""
