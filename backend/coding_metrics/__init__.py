"""Coding-platform metrics aggregation backend."""
