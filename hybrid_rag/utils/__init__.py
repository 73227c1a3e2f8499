"""Shared utilities: configuration, logging, caching, model clients."""
