"""
Business services: reconciliation, lifecycle, snapshot, DNS scan.
"""
