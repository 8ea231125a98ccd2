"""Catalog crawler: subject index discovery and course record extraction."""
