"""Core infrastructure: configuration, logging, errors, resilience."""
