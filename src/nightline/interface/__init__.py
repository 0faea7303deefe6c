"""Command-line interface for nightline."""
