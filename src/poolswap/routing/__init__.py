"""Route plans, quoting services and the route calculator."""
