"""Small HTTP-related constants shared across askai.

Kept in its own module to avoid circular imports between providers and retry.
"""

from __future__ import annotations

# Retryable status codes shared by provider error mapping and the retry wrapper.
RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({408, 409, 429, 500, 502, 503, 504})

# Scheme prefix for cloud object storage references passed through to Gemini.
CLOUD_STORAGE_PREFIX = "gs://"

USER_AGENT = "askai"
