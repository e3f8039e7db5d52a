"""Identity-event driven profile provisioning."""

from school_core.provisioning.events import IdentityEvent, SignupMetadata
from school_core.provisioning.handler import (
    ProvisioningHandler,
    ProvisioningOutcome,
    ProvisioningResult,
)
from school_core.provisioning.retry import VisibilityRetryPolicy, wait_until_visible

__all__ = [
    "IdentityEvent",
    "ProvisioningHandler",
    "ProvisioningOutcome",
    "ProvisioningResult",
    "SignupMetadata",
    "VisibilityRetryPolicy",
    "wait_until_visible",
]
