"""Relational storage: table definitions, engine factory, chat history."""
