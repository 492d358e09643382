"""Integrations with remote services (network policy, astrometry.net REST API)."""
