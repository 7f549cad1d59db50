"""ListLens FastAPI application package."""
