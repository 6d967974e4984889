"""HTTP transport for the health engine."""
