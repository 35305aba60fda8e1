"""Compatibility scoring and candidate retrieval."""

from stellr.domain.matching.container import configure, configure_postgres, get_match_service, get_monitor

__all__ = ["configure", "configure_postgres", "get_match_service", "get_monitor"]
