"""Command-line interface for shiptrack."""
