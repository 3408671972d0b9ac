"""Command-line entrypoint for the compliance importer."""
