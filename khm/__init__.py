"""
KHM - Known Hosts Manager.

Keeps SSH known_hosts files consistent across machines through a central store.
"""

__version__ = "0.6.0"
