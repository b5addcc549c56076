"""Utility functions for the royalty kernel."""
