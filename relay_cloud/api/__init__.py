"""HTTP API, command store and server entry point."""
