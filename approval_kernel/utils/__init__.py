"""Utility modules for the approval kernel."""
