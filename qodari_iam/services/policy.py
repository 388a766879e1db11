"""Single entry point for permission decisions."""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from qodari_iam.core.exceptions import AuthorizationError
from qodari_iam.models.user import User

logger = logging.getLogger(__name__)


class PermissionPolicy:
    """Every permission check goes through here; the account-admin bypass
    lives nowhere else."""

    @staticmethod
    def is_allowed(
        principal: Optional[User],
        permission_key: Optional[str],
        granted: Optional[Iterable[str]],
    ) -> bool:
        if principal is None:
            return False
        if not permission_key:
            return True
        if getattr(principal, "is_admin", False):
            return True
        return permission_key in set(granted or ())

    def enforce(
        self,
        principal: Optional[User],
        permission_key: Optional[str],
        granted: Optional[Iterable[str]],
    ) -> None:
        if not self.is_allowed(principal, permission_key, granted):
            logger.warning(
                "Permission denied principal=%s permission=%s",
                getattr(principal, "id", None),
                permission_key,
            )
            raise AuthorizationError()


permission_policy = PermissionPolicy()
