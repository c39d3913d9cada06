"""Mirrorly - QR-scan virtual try-on for boutiques."""

__version__ = "0.3.0"
