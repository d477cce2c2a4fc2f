"""Silo rule matching and container resolution engine."""
