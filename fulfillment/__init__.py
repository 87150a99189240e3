"""Digital download fulfillment service."""
