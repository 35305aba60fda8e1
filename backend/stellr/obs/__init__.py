"""Logging and metrics bootstrap for the matching service."""

from __future__ import annotations

from fastapi import FastAPI

from stellr.obs import logging as obs_logging
from stellr.obs import middleware
from stellr.settings import settings

_installed: set[int] = set()


def init(app: FastAPI) -> None:
	"""Configure JSON logging and request instrumentation once per app."""
	if not settings.obs_enabled or id(app) in _installed:
		return
	obs_logging.configure_logging()
	middleware.install(app)
	_installed.add(id(app))


__all__ = ["init"]
