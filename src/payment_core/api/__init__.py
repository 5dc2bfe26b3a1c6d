"""FastAPI surface for the payment core."""
