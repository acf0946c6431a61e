"""Infrastructure services: database sessions and the Redis client."""
