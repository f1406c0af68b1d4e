"""Logging and metrics wiring for the lending API."""

from __future__ import annotations

from fastapi import FastAPI

from app.obs import logging as obs_logging
from app.obs import middleware
from app.settings import settings


def init(app: FastAPI) -> None:
	"""Configure JSON logging and request metrics once per application."""
	if not settings.obs_enabled or getattr(app.state, "obs_installed", False):
		return
	obs_logging.configure_logging()
	middleware.install(app)
	app.state.obs_installed = True
	obs_logging.get_logger("clubhub").info(
		"service_boot",
		extra={"service": settings.service_name, "commit": settings.git_commit, "env": settings.environment},
	)


__all__ = ["init"]
