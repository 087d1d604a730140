"""Polling runtime: HTTP access, pacing, backoff and the feed source state machines."""
