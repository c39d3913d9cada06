"""HTTP surface for the Mirrorly try-on backend."""
