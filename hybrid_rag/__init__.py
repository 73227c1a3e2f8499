"""Hybrid vector + knowledge-graph retrieval engine."""

__version__ = "0.1.0"
