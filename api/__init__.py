"""HTTP API for order payment reconciliation."""
