"""Domain layer for the lending workflow."""
