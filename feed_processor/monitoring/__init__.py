"""Prometheus metrics for the feed processor."""
