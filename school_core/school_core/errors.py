"""Error taxonomy for provisioning, invitations, and access control.

Every error carries a stable machine-readable ``code`` so the API layer and
the provisioning handler can report the specific reason without string
matching on messages.
"""

from __future__ import annotations


class TenancyError(Exception):
    """Base class for all tenancy errors."""

    code: str = "tenancy_error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.code.replace("_", " ").capitalize())
        self.message = str(self)


class TenantNotFound(TenancyError):
    """The referenced school does not exist."""

    code = "tenant_not_found"


class TenantAlreadyClaimed(TenancyError):
    """The school already has members, so it cannot be claimed by a new owner."""

    code = "tenant_already_claimed"


class TenantVisibilityTimeout(TenancyError):
    """The school row did not become visible within the retry bound."""

    code = "tenant_visibility_timeout"

    def __init__(self, school_id: str, attempts: int, waited_seconds: float) -> None:
        super().__init__(
            f"School '{school_id}' not yet visible after {attempts} attempt(s) ({waited_seconds:.2f}s)"
        )
        self.school_id = school_id
        self.attempts = attempts
        self.waited_seconds = waited_seconds


class InvitationNotFound(TenancyError):
    """No invitation matches the token and email."""

    code = "invitation_not_found"


class InvitationExpired(TenancyError):
    """The invitation exists but its expiry has passed."""

    code = "invitation_expired"


class InvitationAlreadyAccepted(TenancyError):
    """The invitation has already been consumed."""

    code = "invitation_already_accepted"


class InvitationAlreadyPending(TenancyError):
    """An unaccepted, unexpired invitation already exists for the email and school."""

    code = "invitation_already_pending"


class MemberAlreadyExists(TenancyError):
    """The email already belongs to an active member of the school."""

    code = "member_already_exists"


class DuplicateProfile(TenancyError):
    """The identity already has a profile.

    Provisioning treats this as success; it is raised only by low-level
    helpers that need to tell callers the insert was a no-op.
    """

    code = "duplicate_profile"


class UnauthorizedRoleTransition(TenancyError):
    """The actor may not move the target profile to the requested role or state."""

    code = "unauthorized_role_transition"


class AccessDenied(TenancyError):
    """Uniform denial.

    Raised for tenant mismatches, insufficient roles, missing session
    context, and rows that do not exist, so callers cannot tell them apart.
    """

    code = "access_denied"

    def __init__(self, message: str | None = None) -> None:
        super().__init__("Access denied")
        # Internal reason for logs only; never sent to clients.
        self.reason = message or "denied"
