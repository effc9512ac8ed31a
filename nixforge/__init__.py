"""
nixforge - interactive NixOS maintenance console
"""

__version__ = "0.3.0"
