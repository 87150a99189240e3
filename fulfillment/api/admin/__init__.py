"""Admin API routers (X-Admin-Key protected)."""
