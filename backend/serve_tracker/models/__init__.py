"""ORM models for the local durable cache."""
