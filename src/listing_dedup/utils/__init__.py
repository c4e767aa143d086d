"""Normalization, geometry and caching helpers."""
