"""Scheduled jobs for the lending workflow."""
