"""Roadmap and module generation pipeline."""
