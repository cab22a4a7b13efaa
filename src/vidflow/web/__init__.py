"""FastAPI surface for the pipeline engine."""
