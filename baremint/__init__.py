"""
Baremint core: token-gated content access, trade confirmation and holder notifications.
"""

__version__ = "1.0.0"
