"""Listing data utilities: sample data and the operator CLI."""
