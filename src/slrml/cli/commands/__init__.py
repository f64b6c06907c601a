"""Implementations of the slrml commands."""
