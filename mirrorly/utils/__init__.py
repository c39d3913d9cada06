"""Helpers shared by the try-on services."""
