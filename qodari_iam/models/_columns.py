"""Shared column helpers for models"""

import uuid

from sqlalchemy import Column, DateTime, String

from qodari_iam.core.clock import utcnow


def uuid_pk() -> Column:
    return Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))


def created_at_column() -> Column:
    return Column(DateTime(timezone=True), default=utcnow, nullable=False)


def updated_at_column() -> Column:
    return Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
