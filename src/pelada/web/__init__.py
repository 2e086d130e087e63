"""FastAPI application and response mapping."""
