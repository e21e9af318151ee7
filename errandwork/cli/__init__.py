"""Command-line client for the marketplace maintenance endpoints."""
