"""Normalized content records and their classification enums."""
