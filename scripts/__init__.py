"""Command-line entrypoints for the person-group resolver."""
