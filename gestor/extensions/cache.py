"""Centralized cache extension."""

from __future__ import annotations

import os
from typing import Any, Dict

from flask import current_app
from flask_caching import Cache

from gestor.constants import CACHE_KEY_DASHBOARD_PREFIX

cache = Cache()


def init_cache(app) -> None:
    """Initialize the cache backing store based on environment configuration."""
    default_timeout = int(os.getenv("CACHE_DEFAULT_TIMEOUT", "120"))
    redis_url = os.getenv("REDIS_URL")
    config: Dict[str, Any] = {
        "CACHE_DEFAULT_TIMEOUT": default_timeout,
        "CACHE_KEY_PREFIX": os.getenv("CACHE_KEY_PREFIX", "gestor"),
    }

    if redis_url:
        config.update(
            {
                "CACHE_TYPE": "RedisCache",
                "CACHE_REDIS_URL": redis_url,
                "CACHE_IGNORE_ERRORS": True,
            }
        )
    else:
        # SimpleCache keeps everything in-process; suitable as a development fallback.
        config.update({"CACHE_TYPE": "SimpleCache"})

    for key, value in config.items():
        app.config.setdefault(key, value)

    cache.init_app(app)


def get_cache_timeout(config_key: str, default: int) -> int:
    """Helper to read cache TTLs from app config when inside an app context."""
    if current_app:
        return int(current_app.config.get(config_key, default))
    return default


def _company_version(company_id) -> int:
    return cache.get(f"{CACHE_KEY_DASHBOARD_PREFIX}version:{company_id}") or 0


def dashboard_cache_key(ctx, name: str) -> str:
    """
    Build the cache key of a dashboard aggregate for a role context.

    The key carries the company's data version, so bumping it with
    :func:`invalidate_company_dashboards` retires every cached aggregate of
    that company at once.
    """
    teams = ",".join(sorted(str(team) for team in ctx.team_ids))
    version = _company_version(ctx.company_id)
    role = getattr(ctx.role, "value", ctx.role)
    return (
        f"{CACHE_KEY_DASHBOARD_PREFIX}{name}:{ctx.company_id}:v{version}:"
        f"{role}:{ctx.user_id}:{teams}"
    )


def invalidate_company_dashboards(company_id) -> None:
    """Discard cached dashboard aggregates of ``company_id``."""
    key = f"{CACHE_KEY_DASHBOARD_PREFIX}version:{company_id}"
    cache.set(key, _company_version(company_id) + 1, timeout=0)
