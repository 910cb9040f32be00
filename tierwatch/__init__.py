"""
tierwatch - tiered threshold monitoring for a wallet portfolio and agent token prices.
"""

__version__ = "1.0.0"
