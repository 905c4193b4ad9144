"""Command line interface for nansql."""
