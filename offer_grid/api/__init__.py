"""
HTTP surface for edit events and maintenance passes.
"""
