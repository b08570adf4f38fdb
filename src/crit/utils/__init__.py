"""Small helpers shared across crit modules."""
