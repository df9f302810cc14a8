"""HTTP server, middleware and reverse proxy for demoapp."""
