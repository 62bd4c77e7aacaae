"""Shared defaults for caseflow."""

DEFAULT_MAX_ADVANCE_ATTEMPTS = 3
DEFAULT_CONFLICT_BACKOFF = 0.01
DEFAULT_EVENT_BUFFER_SIZE = 1000
DEFAULT_REDIS_PREFIX = "caseflow:events"
SYSTEM_ACTOR_ID = "system"
SYSTEM_ACTOR_ROLE = "system"
