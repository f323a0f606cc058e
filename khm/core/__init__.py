"""
Core utilities: configuration, logging, errors, SSH key syntax.
"""
