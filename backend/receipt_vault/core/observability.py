"""Observability helpers (Sentry init & common scrubbing).

Centralises Sentry initialisation so configuration does not drift.
Every helper is a no-op when ``SENTRY_DSN`` is unset, which keeps tests
and local development quiet.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from receipt_vault.core.config import Settings, settings


def _before_send(event: Dict[str, Any], hint: Dict[str, Any] | None = None):
	"""Scrub obvious PII / secrets before sending to Sentry.

	- Drop Authorization, Cookie and API key headers
	- Remove request data/body (keep method + URL); bodies are PDF bytes
	"""
	req = event.get("request") or {}
	headers = req.get("headers") or {}
	for k in list(headers.keys()):
		lk = k.lower()
		if lk in ("authorization", "cookie", "set-cookie", "x-api-key", "x-internal-api-key"):
			headers.pop(k, None)
	req.pop("data", None)
	event["request"] = req
	return event


def _enabled() -> bool:
	return bool(settings.SENTRY_DSN)


def init_sentry(service: str, cfg: Optional[Settings] = None) -> bool:
	"""Initialise Sentry once for a given process.

	Returns True if Sentry was initialised; False otherwise.
	"""
	cfg = cfg or settings
	if not cfg.SENTRY_DSN:
		return False
	if getattr(init_sentry, "_done", False):  # prevent duplicate init in same process
		return True
	sentry_sdk.init(
		dsn=cfg.SENTRY_DSN,
		integrations=[FastApiIntegration(), SqlalchemyIntegration()],
		traces_sample_rate=float(cfg.SENTRY_TRACES_SAMPLE_RATE or 0),
		environment=cfg.ENVIRONMENT,
		release=cfg.SENTRY_RELEASE,
		before_send=_before_send,
	)
	sentry_sdk.set_tag("service", service)
	init_sentry._done = True  # type: ignore[attr-defined]
	return True


def sentry_set_tags(tags: Dict[str, Any]) -> None:
	"""Set tags on the current Sentry scope (strings only)."""
	if not _enabled():
		return
	for k, v in (tags or {}).items():
		# Avoid PII; coerce to short strings
		sentry_sdk.set_tag(str(k), str(v)[:128] if v is not None else "")


def sentry_breadcrumb(category: str, message: str, level: str = "info", data: Optional[Dict[str, Any]] = None) -> None:
	"""Add a breadcrumb for important lifecycle steps."""
	if not _enabled():
		return
	sentry_sdk.add_breadcrumb(
		category=category,
		message=message,
		level=level,
		data=data or {},
	)


def sentry_capture_message(message: str, level: str = "error", extras: Optional[Dict[str, Any]] = None) -> None:
	"""Report a condition that needs operator attention (e.g. orphaned files)."""
	if not _enabled():
		return
	with sentry_sdk.new_scope() as scope:
		for k, v in (extras or {}).items():
			scope.set_extra(str(k), v)
		sentry_sdk.capture_message(message, level=level)


def sentry_capture_exception(exc: BaseException) -> None:
	if not _enabled():
		return
	sentry_sdk.capture_exception(exc)


__all__ = [
	"init_sentry",
	"sentry_set_tags",
	"sentry_breadcrumb",
	"sentry_capture_message",
	"sentry_capture_exception",
]
