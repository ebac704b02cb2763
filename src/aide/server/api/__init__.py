"""HTTP API of the functions server."""
