"""Bakery delivery checkout backend."""
