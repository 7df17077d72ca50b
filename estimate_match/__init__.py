"""
Estimate Match
==============

Matches supplier invoice line items to project cost estimate line items.
"""

__version__ = "0.1.0"
