"""Shared storage layer: connection pool, persistence gateway, models, repositories."""
