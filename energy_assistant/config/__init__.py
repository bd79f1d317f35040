"""Configuration models and environment settings."""
