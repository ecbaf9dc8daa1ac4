"""
Seller Marketplace Core

Data model, ownership policies and order aggregation rules for a small
seller marketplace.
"""

__version__ = "1.0.0"
