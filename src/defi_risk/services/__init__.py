"""Client services."""
