"""Domain layer: exceptions and lifecycle services."""
