"""Security event logging for the auth audit trail.

Append-only log to the security_events table. A failed audit write is logged
and dropped: it must never change the outcome of the request being audited.
"""

import logging
from datetime import datetime
from enum import Enum
from uuid import UUID

import psycopg2
from pydantic import BaseModel

from clients.postgres_client import PostgresClient
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


class SecurityEvent(Enum):
    """Auth security event types."""

    USER_REGISTER = "user_register"
    LOGIN = "login"
    LOGIN_FAILED = "login_failed"
    ACCOUNT_LOCKED = "account_locked"
    OTP_SENT = "otp_sent"
    OTP_VERIFIED = "otp_verified"
    OTP_VERIFICATION_FAILED = "otp_verification_failed"
    OTP_ATTEMPTS_EXHAUSTED = "otp_attempts_exhausted"


class AuditEvent(BaseModel):
    """One immutable audit fact."""

    event: SecurityEvent
    user_id: UUID | None = None
    username: str | None = None
    success: bool
    detail: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    created_at: datetime

    model_config = {"frozen": True}


class SecurityLogger:
    """Append-only security event logger."""

    def __init__(self, postgres: PostgresClient):
        self._db = postgres

    def log(
        self,
        event: SecurityEvent,
        user_id: UUID | None = None,
        username: str | None = None,
        success: bool = True,
        detail: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuditEvent:
        """Record an event. Never raises on storage failure."""
        record = AuditEvent(
            event=event,
            user_id=user_id,
            username=username,
            success=success,
            detail=detail,
            ip_address=ip_address,
            user_agent=user_agent,
            created_at=now_utc(),
        )

        try:
            self._db.execute_returning(
                """INSERT INTO security_events
                   (event_type, user_id, username, success, detail,
                    ip_address, user_agent, created_at)
                   VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                   RETURNING id""",
                (
                    record.event.value,
                    str(record.user_id) if record.user_id else None,
                    record.username,
                    record.success,
                    record.detail,
                    record.ip_address,
                    record.user_agent,
                    record.created_at,
                ),
            )
        except (psycopg2.Error, RuntimeError):
            logger.exception(f"Failed to write security event {event.value}")

        return record
