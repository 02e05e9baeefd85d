"""Route collections mounted under ``/api``."""
