"""FastAPI layer of the broadcaster."""
