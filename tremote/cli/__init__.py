"""Command line interface for tremote."""
