"""Shared test setup: no rate limiting, no debug payloads, no real model keys."""

import os

os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("DEBUG_MODEL_CLIENT", "false")
os.environ.setdefault("SENTRY_DSN", "")
