"""Audit service for authentication and token events."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from qodari_iam.models.audit import AuditLog
from qodari_iam.models.enums import PrincipalType

logger = logging.getLogger(__name__)

STATUS_SUCCESS = "success"
STATUS_FAILURE = "failure"


class AuditService:
    """Persist immutable audit trail entries.

    Writing an entry never fails the request that triggered it. Call this
    only after the caller's own unit of work is committed, since a failed
    insert rolls the session back.
    """

    @staticmethod
    def log_event(
        db: Session,
        *,
        account_id: str,
        action: str,
        status: str = STATUS_SUCCESS,
        actor_type: str = PrincipalType.USER.value,
        user_id: Optional[str] = None,
        api_client_id: Optional[str] = None,
        application_id: Optional[str] = None,
        resource: Optional[str] = None,
        resource_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        error_message: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[AuditLog]:
        event = AuditLog(
            account_id=account_id,
            actor_type=actor_type,
            user_id=user_id,
            api_client_id=api_client_id,
            application_id=application_id,
            action=action,
            resource=resource,
            resource_id=resource_id,
            ip_address=ip_address,
            user_agent=user_agent,
            status=status,
            error_message=error_message,
            metadata_json=metadata or {},
        )
        try:
            db.add(event)
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Failed to write audit event action=%s", action)
            return None
        return event


audit_service = AuditService()
