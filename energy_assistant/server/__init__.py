"""HTTP transport: FastAPI app factory, auth, rate limiting, CLI."""
