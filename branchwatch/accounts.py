"""Profile bootstrap, branch assignment and identity resolution."""

import logging
import threading
from typing import Iterable, List

from .errors import NotFound, PermissionDenied, ValidationError
from .models import Identity, Role, UserProfile, sanitize_assigned_branches
from .repository import BranchRepository, UserRepository

logger = logging.getLogger(__name__)


class AccountService:
    def __init__(self, users: UserRepository, branches: BranchRepository) -> None:
        self.users = users
        self.branches = branches
        # check-then-create for the bootstrap superadmin must not interleave
        self._register_lock = threading.Lock()

    def register(self, user_id: str, name: str = "", email: str = "") -> UserProfile:
        """
        Create the profile for a newly signed-up user.

        The very first profile becomes superadmin; everyone after that is a user.
        """
        if not (user_id or "").strip():
            raise ValidationError("A user id is required to create a profile.")

        with self._register_lock:
            role = Role.SUPERADMIN if self.users.is_empty() else Role.USER
            profile = self.users.create(
                UserProfile(id=user_id.strip(), name=(name or "").strip(), email=(email or "").strip(), role=role)
            )

        if role == Role.SUPERADMIN:
            logger.info(f"Bootstrap: first profile {profile.id} granted superadmin")
        else:
            logger.info(f"Created profile {profile.id} with role {role.value}")
        return profile

    def resolve_identity(self, identity: Identity) -> UserProfile:
        if not identity.is_authenticated or not identity.user_id:
            raise PermissionDenied("Sign in to continue.")
        profile = self.users.get(identity.user_id)
        if profile is None:
            raise NotFound(f"No profile exists for user {identity.user_id}.")
        return profile

    @staticmethod
    def require_superadmin(actor: UserProfile) -> None:
        if not actor.is_superadmin:
            raise PermissionDenied("You do not have superadmin permissions for this action.")

    def list_users(self, actor: UserProfile) -> List[UserProfile]:
        self.require_superadmin(actor)
        return self.users.list_all()

    def assign_branches(self, actor: UserProfile, user_id: str, branch_ids: Iterable[str]) -> UserProfile:
        """Replace the whole assignment of `user_id`. Only superadmins may do this."""
        self.require_superadmin(actor)
        wanted = sanitize_assigned_branches(list(branch_ids))
        unknown = sorted(b for b in wanted if not self.branches.exists(b))
        if unknown:
            raise ValidationError(f"Unknown branch ids: {', '.join(unknown)}.")
        profile = self.users.update_assigned_branches(user_id, wanted)
        logger.info(f"{actor.id} assigned {len(wanted)} branches to {user_id}")
        return profile
