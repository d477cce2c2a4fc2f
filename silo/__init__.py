"""Silo command-line interface."""
