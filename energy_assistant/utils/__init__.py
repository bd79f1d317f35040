"""Shared utilities (request correlation)."""
