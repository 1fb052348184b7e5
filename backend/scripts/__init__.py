"""Command-line maintenance scripts. Run with ``python -m scripts.<name>``."""
