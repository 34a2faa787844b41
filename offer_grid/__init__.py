"""
Offer grid edit-processing core.
"""

__version__ = "1.0.0"
