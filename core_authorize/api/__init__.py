"""FastAPI hosting adapter for the authorize engine."""
