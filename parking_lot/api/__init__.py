"""HTTP API for the parking lot backend."""
