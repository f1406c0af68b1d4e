"""Club inventory lending workflow."""
