"""Simulated card checkout: order, card authorization, 3DS challenge, settlement."""

__version__ = "1.0.0"
