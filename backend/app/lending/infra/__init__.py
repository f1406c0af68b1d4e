"""Infrastructure helpers for the lending workflow."""
