"""Command-line interface for Character Chat."""
