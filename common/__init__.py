"""Shared helpers: tile/projection math, value types, JSON logging."""
