from __future__ import annotations

"""Domain-specific exceptions for service and orchestration layers.

Routers should catch these and translate them to appropriate HTTP responses.
"""


class JobValidationError(Exception):
    """Missing actor identity or required job parameter (maps to HTTP 400)."""


class PersistenceError(Exception):
    """Job store insert/update/select failed (maps to HTTP 503)."""


class TriggerInvocationError(Exception):
    """Pipeline kickoff failed. Logged only; the job remains valid."""


class NotFoundError(Exception):
    """Resource not found (maps to HTTP 404)."""


class ExternalServiceError(Exception):
    """Upstream provider or storage error (maps to HTTP 503)."""
