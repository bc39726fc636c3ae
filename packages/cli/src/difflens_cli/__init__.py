"""Command-line interface for difflens."""
