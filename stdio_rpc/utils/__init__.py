"""Shared utilities for stdio-rpc."""
