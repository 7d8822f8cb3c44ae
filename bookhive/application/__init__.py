"""HTTP application layer: FastAPI app factory, middleware, routes."""
