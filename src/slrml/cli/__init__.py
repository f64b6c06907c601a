"""Command-line interface for slrml."""
