"""Command-line interface for helmchecker-ai."""
