"""HTTP API layer: dependencies, rate limiting and versioned routers."""
