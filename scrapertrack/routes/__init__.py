"""Flask blueprints: request tracking hook, JSON API, system endpoints."""
