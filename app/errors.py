"""
Error taxonomy for provisioning, billing and entitlement code.

Every error carries an HTTP status and a short machine-readable reason so the
blueprints can turn it into a JSON response without re-classifying it.
"""


class TenancyError(Exception):
    status_code = 500
    reason = 'error'

    def __init__(self, message, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self):
        return {"error": self.message, "reason": self.reason}


class ProvisioningError(TenancyError):
    """Base of the errors a signup raises after its input validated."""


class ValidationError(TenancyError):
    """Bad input. Surfaced to the caller, never retried."""
    status_code = 400
    reason = 'validation'


class NotFound(TenancyError):
    status_code = 404
    reason = 'not_found'


class ConflictError(TenancyError):
    status_code = 409
    reason = 'conflict'


class SlugTaken(ConflictError, ProvisioningError):
    reason = 'slug_taken'


class SlugExhausted(ConflictError, ProvisioningError):
    reason = 'slug_exhausted'


class DependencyError(TenancyError):
    """Billing provider or tenant space allocation failed."""
    status_code = 503
    reason = 'dependency'


class ProvisioningFailed(DependencyError, ProvisioningError):
    """A provisioning step failed and the saga was compensated (or parked as failed)."""
    reason = 'provisioning_failed'

    def __init__(self, message, compensated=True, **context):
        super().__init__(message, **context)
        self.compensated = compensated


class InvariantViolation(TenancyError):
    """An external event references state that does not exist. Logged and dropped."""
    reason = 'invariant_violation'

