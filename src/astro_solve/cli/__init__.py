"""Command-line interface for astro-solve."""
