"""Effective roles and permissions of a principal in one application."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List

from sqlalchemy.orm import Session

from qodari_iam.models.enums import PrincipalType
from qodari_iam.models.rbac import ApiClientRole, Permission, Role, RolePermission, UserRole


@dataclass
class ResolvedAccess:
    roles: List[str] = field(default_factory=list)
    permissions: List[str] = field(default_factory=list)


class RoleResolver:
    """Flatten role assignments into role slugs and ``resource:action`` keys.

    Only roles of the requested account and application count; a role from
    another application of the same account is ignored even when assigned.
    """

    def resolve(
        self,
        db: Session,
        principal_id: str,
        principal_type: str,
        account_id: str,
        application_id: str,
    ) -> ResolvedAccess:
        if principal_type == PrincipalType.USER.value:
            assignment, principal_column = UserRole, UserRole.user_id
        elif principal_type == PrincipalType.API_CLIENT.value:
            assignment, principal_column = ApiClientRole, ApiClientRole.api_client_id
        else:
            raise ValueError(f"Unknown principal type: {principal_type}")

        rows = (
            db.query(Role.slug, Permission.resource, Permission.action)
            .join(assignment, assignment.role_id == Role.id)
            .outerjoin(RolePermission, RolePermission.role_id == Role.id)
            .outerjoin(Permission, Permission.id == RolePermission.permission_id)
            .filter(
                principal_column == principal_id,
                Role.account_id == account_id,
                Role.application_id == application_id,
            )
            .order_by(Role.slug, Permission.resource, Permission.action)
            .all()
        )

        access = ResolvedAccess()
        seen_roles = set()
        seen_permissions = set()
        for role_slug, resource, action in rows:
            if role_slug not in seen_roles:
                seen_roles.add(role_slug)
                access.roles.append(role_slug)
            if resource is None or action is None:
                continue
            key = f"{resource}:{action}"
            if key not in seen_permissions:
                seen_permissions.add(key)
                access.permissions.append(key)
        return access

    def resolve_user(self, db: Session, user_id: str, account_id: str, application_id: str) -> ResolvedAccess:
        return self.resolve(db, user_id, PrincipalType.USER.value, account_id, application_id)

    def resolve_api_client(self, db: Session, api_client_id: str, account_id: str, application_id: str) -> ResolvedAccess:
        return self.resolve(db, api_client_id, PrincipalType.API_CLIENT.value, account_id, application_id)


role_resolver = RoleResolver()
