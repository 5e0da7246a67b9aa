"""HTTP API for the booking engine (FastAPI on AWS Lambda via Mangum)."""
