"""Configuration and logging setup for demoapp."""
