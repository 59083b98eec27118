"""Conditional outcome market makers: LMSR and fixed-product pools."""

__version__ = "0.3.0"
