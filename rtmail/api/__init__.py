"""HTTP layer: FastAPI app factory, SES webhook and shared request helpers."""
