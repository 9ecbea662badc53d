"""
Error taxonomy for the deployment pipeline.

Adapters raise these; ``pipeline.run_pipeline`` turns the first one raised
into a terminal ``PipelineResult``. Only ``CleanupWarning`` is non-fatal.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class DeployError(Exception):
    """Base class for every pipeline failure."""

    stage = 'pipeline'


class PreconditionError(DeployError):
    """A required variable or executable is missing."""

    stage = 'precondition'


class ConfigError(PreconditionError):
    """Pipeline configuration could not be loaded."""


class SecretLookupError(DeployError):
    """A secret store lookup failed."""

    stage = 'secrets'
    kind = 'lookup-failed'

    def __init__(self, message: str, path: str = '', field: str = '') -> None:
        super().__init__(message)
        self.path = path
        self.field = field


class SecretNotFoundError(SecretLookupError):
    kind = 'not-found'


class SecretAuthError(SecretLookupError):
    kind = 'auth-expired'


class SecretStoreUnreachableError(SecretLookupError):
    kind = 'unreachable'


class RenderError(DeployError):
    """Template malformed, secret unresolvable or output unwritable."""

    stage = 'render'


class ApplyRejectReason(str, Enum):
    MALFORMED_SPEC = 'malformed-spec'
    UNKNOWN_APP_ID = 'unknown-app-id'
    UNAUTHORIZED = 'unauthorized'
    NETWORK = 'network'
    MISSING_SPEC = 'missing-spec'
    UNKNOWN = 'unknown'


class ApplyError(DeployError):
    """The platform rejected the update or could not be reached."""

    stage = 'apply'

    def __init__(self, message: str, reason: ApplyRejectReason = ApplyRejectReason.UNKNOWN,
                 detail: Optional[str] = None) -> None:
        super().__init__(message)
        self.reason = reason
        self.detail = detail


class CleanupWarning(UserWarning):
    """Rendered spec could not be removed after a successful apply."""

    stage = 'cleanup'
