"""HTTP API for the keeper service."""
