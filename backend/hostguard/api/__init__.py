"""FastAPI routers for the monitoring engine."""
