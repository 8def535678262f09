"""Deterministic checks applied to candidate diffs before any model review."""
