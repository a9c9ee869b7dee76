"""Notification port, adapters, outbox writer and dispatcher.

Flow: domain services call ``NotificationOutbox`` inside their transaction,
which resolves recipients and writes a ``jobs_outbox`` row. After the request
commits, ``NotificationDispatcher`` delivers the job through a
``NotificationPort`` with bounded retry and backoff. Every delivery attempt is
written to ``notification_log``. Delivery failures never affect the
transaction that produced the job.
"""

import asyncio
import html
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol

import httpx
from fastapi import BackgroundTasks
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.database import async_session_factory
from app.core.errors import DeliveryFailed, NotFound
from app.models.audit import NotificationLog
from app.models.enums import DeliveryStatus, JobStatus, NotificationChannel, TicketStatus, UserRole
from app.models.ticket import Ticket
from app.models.user import User
from app.services.jobs import JobsService, pop_enqueued_jobs

logger = logging.getLogger(__name__)

SEND_INVITE = "send_invite"
SEND_CLAIM = "send_claim"
NOTIFY_STATUS_CHANGE = "notify_status_change"
NOTIFY_NEW_TICKET = "notify_new_ticket"

# Jobs that carry a one-time link; the link is dropped once the job is done or dead
TOKEN_JOB_TYPES = frozenset({SEND_INVITE, SEND_CLAIM})


@dataclass
class DeliveryReceipt:
    """Outcome of delivering one message to one recipient."""

    recipient: str
    channel: NotificationChannel
    subject: str
    ok: bool
    error: Optional[str] = None


class NotificationPort(Protocol):
    """Outbound notification collaborator."""

    async def send_invite(self, email: str, token: str, meta: dict[str, Any]) -> list[DeliveryReceipt]:
        ...

    async def send_claim(self, email: str, token: str, meta: dict[str, Any]) -> list[DeliveryReceipt]:
        ...

    async def notify_status_change(
        self,
        recipients: list[str],
        ticket: dict[str, Any],
        old_status: str,
        new_status: str,
    ) -> list[DeliveryReceipt]:
        ...

    async def notify_new_ticket(
        self,
        recipients: list[str],
        ticket: dict[str, Any],
    ) -> list[DeliveryReceipt]:
        ...


def _label(value: str) -> str:
    return value.replace("_", " ").title()


class EmailNotifier:
    """Composes the messages; subclasses decide how to deliver one email."""

    channel = NotificationChannel.EMAIL

    def __init__(self, app_name: str, base_url: str):
        self.app_name = app_name
        self.base_url = base_url.rstrip("/")

    async def deliver(self, to: str, subject: str, body: str) -> DeliveryReceipt:
        raise NotImplementedError

    async def send_invite(self, email: str, token: str, meta: dict[str, Any]) -> list[DeliveryReceipt]:
        link = f"{self.base_url}/accept-invite?token={token}"
        company = html.escape(meta.get("company_name", ""))
        subject = f"You're invited to join {meta.get('company_name', '')} on {self.app_name}"
        body = (
            f"<p>Hi {html.escape(meta.get('name', ''))},</p>"
            f"<p>{html.escape(meta.get('invited_by_name') or 'An administrator')} invited you to join "
            f"<strong>{company}</strong> as {_label(meta.get('role', ''))}.</p>"
            f'<p><a href="{link}">Accept invitation</a></p>'
            f"<p>This link expires on {meta.get('expires_at', '')}.</p>"
        )
        return [await self.deliver(email, subject, body)]

    async def send_claim(self, email: str, token: str, meta: dict[str, Any]) -> list[DeliveryReceipt]:
        link = f"{self.base_url}/claim-account?token={token}"
        subject = f"Set up your resident account for {meta.get('space_label', 'your home')}"
        body = (
            f"<p>Hi {html.escape(meta.get('name', ''))},</p>"
            f"<p>Your property manager added you as a resident of "
            f"{html.escape(meta.get('space_label', ''))}. Create your account to report "
            f"plumbing issues and follow their progress.</p>"
            f'<p><a href="{link}">Claim your account</a></p>'
        )
        return [await self.deliver(email, subject, body)]

    async def notify_status_change(
        self,
        recipients: list[str],
        ticket: dict[str, Any],
        old_status: str,
        new_status: str,
    ) -> list[DeliveryReceipt]:
        subject = f"Ticket #{ticket.get('ticket_number')} is now {_label(new_status)}"
        body = (
            f"<p>Ticket #{ticket.get('ticket_number')} ({_label(ticket.get('issue_type', ''))}) "
            f"moved from <strong>{_label(old_status)}</strong> to "
            f"<strong>{_label(new_status)}</strong>.</p>"
            f'<p><a href="{self.base_url}/tickets/{ticket.get("id")}">View ticket</a></p>'
        )
        return [await self.deliver(to, subject, body) for to in recipients]

    async def notify_new_ticket(
        self,
        recipients: list[str],
        ticket: dict[str, Any],
    ) -> list[DeliveryReceipt]:
        severity = ticket.get("severity", "")
        subject = (
            f"New {_label(severity)} ticket #{ticket.get('ticket_number')}: "
            f"{_label(ticket.get('issue_type', ''))}"
        )
        body = (
            f"<p>{html.escape(ticket.get('description') or 'No description provided.')}</p>"
            f'<p><a href="{self.base_url}/tickets/{ticket.get("id")}">Open ticket</a></p>'
        )
        return [await self.deliver(to, subject, body) for to in recipients]


class ResendNotifier(EmailNotifier):
    """Delivers email through the Resend REST API."""

    def __init__(
        self,
        api_key: str,
        sender: str,
        app_name: str,
        base_url: str,
        api_url: str = "https://api.resend.com/emails",
        timeout: float = 10.0,
    ):
        super().__init__(app_name, base_url)
        self.api_key = api_key
        self.sender = sender
        self.api_url = api_url
        self.timeout = timeout

    async def deliver(self, to: str, subject: str, body: str) -> DeliveryReceipt:
        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    self.api_url,
                    json={"from": self.sender, "to": [to], "subject": subject, "html": body},
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    timeout=self.timeout,
                )
            if response.status_code >= 400:
                error = f"Resend returned {response.status_code}: {response.text[:200]}"
                logger.warning(f"[NOTIFY] {error}")
                return DeliveryReceipt(to, self.channel, subject, ok=False, error=error)
            return DeliveryReceipt(to, self.channel, subject, ok=True)
        except httpx.HTTPError as e:
            logger.warning(f"[NOTIFY] Resend request failed for {to}: {e}")
            return DeliveryReceipt(to, self.channel, subject, ok=False, error=str(e))


class LoggingNotifier(EmailNotifier):
    """Development adapter: writes messages to the log instead of sending."""

    channel = NotificationChannel.LOG

    async def deliver(self, to: str, subject: str, body: str) -> DeliveryReceipt:
        logger.info(f"[NOTIFY] (log only) to={to} subject={subject!r}")
        return DeliveryReceipt(to, self.channel, subject, ok=True)


_port: Optional[NotificationPort] = None


def get_notification_port() -> NotificationPort:
    """Process-wide notification adapter chosen from settings."""
    global _port
    if _port is None:
        settings = get_settings()
        if settings.resend_api_key:
            _port = ResendNotifier(
                api_key=settings.resend_api_key,
                sender=settings.resend_from,
                app_name=settings.app_name,
                base_url=settings.app_base_url,
                api_url=settings.resend_api_url,
                timeout=settings.notification_timeout_seconds,
            )
        else:
            _port = LoggingNotifier(settings.app_name, settings.app_base_url)
    return _port


def ticket_snapshot(ticket: Ticket) -> dict[str, Any]:
    return {
        "id": str(ticket.id),
        "ticket_number": ticket.ticket_number,
        "issue_type": ticket.issue_type.value,
        "severity": ticket.severity.value,
        "status": ticket.status.value,
        "description": ticket.description,
    }


class NotificationOutbox:
    """Resolves recipients and enqueues notification jobs in the current transaction."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.jobs = JobsService(db)
        self.settings = get_settings()

    async def _enqueue(self, job_type: str, payload: dict[str, Any], unique_scope: str) -> Optional[uuid.UUID]:
        return await self.jobs.enqueue(
            job_type=job_type,
            payload=payload,
            unique_scope=unique_scope,
            max_attempts=self.settings.notification_max_attempts,
        )

    async def platform_recipients(self) -> list[str]:
        """Dispatch inbox, or every platform admin when none is configured."""
        if self.settings.platform_inbox:
            return self.settings.platform_inbox
        result = await self.db.execute(
            select(User.email).where(
                User.role == UserRole.PLATFORM_ADMIN,
                User.is_active.is_(True),
            )
        )
        return sorted(set(result.scalars().all()))

    async def company_admin_recipients(self, company_id: uuid.UUID) -> list[str]:
        result = await self.db.execute(
            select(User.email).where(
                User.company_id == company_id,
                User.role == UserRole.COMPANY_ADMIN,
                User.is_active.is_(True),
            )
        )
        return list(result.scalars().all())

    async def invite(
        self,
        token_id: uuid.UUID,
        raw_token: str,
        email: str,
        name: str,
        role: str,
        company_name: str,
        invited_by_name: Optional[str],
        expires_at: str,
        invitation_id: uuid.UUID,
    ) -> Optional[uuid.UUID]:
        return await self._enqueue(
            SEND_INVITE,
            {
                "email": email,
                "token": raw_token,
                "invitation_id": str(invitation_id),
                "meta": {
                    "name": name,
                    "role": role,
                    "company_name": company_name,
                    "invited_by_name": invited_by_name,
                    "expires_at": expires_at,
                },
            },
            unique_scope=f"{SEND_INVITE}:token:{token_id}",
        )

    async def claim(
        self,
        token_id: uuid.UUID,
        raw_token: str,
        email: str,
        name: str,
        space_label: str,
        occupant_id: uuid.UUID,
    ) -> Optional[uuid.UUID]:
        return await self._enqueue(
            SEND_CLAIM,
            {
                "email": email,
                "token": raw_token,
                "occupant_id": str(occupant_id),
                "meta": {"name": name, "space_label": space_label},
            },
            unique_scope=f"{SEND_CLAIM}:token:{token_id}",
        )

    async def status_changed(
        self,
        ticket: Ticket,
        company_id: uuid.UUID,
        old_status: TicketStatus,
        new_status: TicketStatus,
        actor: Any,
        sequence: int,
    ) -> Optional[uuid.UUID]:
        """Platform changes notify the company admins and the reporter; others notify dispatch."""
        if actor.role == UserRole.PLATFORM_ADMIN:
            recipients = await self.company_admin_recipients(company_id)
            creator = await self.db.get(User, ticket.created_by_user_id)
            if creator:
                recipients.append(creator.email)
        else:
            recipients = await self.platform_recipients()

        recipients = sorted({r.lower() for r in recipients if r and r.lower() != (actor.email or "").lower()})
        if not recipients:
            logger.debug(f"[NOTIFY] no recipients for status change on ticket={ticket.id}")
            return None

        return await self._enqueue(
            NOTIFY_STATUS_CHANGE,
            {
                "recipients": recipients,
                "ticket": ticket_snapshot(ticket),
                "old_status": old_status.value,
                "new_status": new_status.value,
            },
            unique_scope=f"{NOTIFY_STATUS_CHANGE}:ticket:{ticket.id}:{sequence}",
        )

    async def new_ticket(self, ticket: Ticket) -> Optional[uuid.UUID]:
        recipients = await self.platform_recipients()
        if not recipients:
            return None
        return await self._enqueue(
            NOTIFY_NEW_TICKET,
            {"recipients": recipients, "ticket": ticket_snapshot(ticket)},
            unique_scope=f"{NOTIFY_NEW_TICKET}:ticket:{ticket.id}",
        )


class NotificationDispatcher:
    """Delivers committed outbox jobs with bounded retry and backoff."""

    def __init__(
        self,
        port: NotificationPort,
        session_factory: Callable[[], AsyncSession],
        backoff_seconds: float = 0.5,
    ):
        self.port = port
        self.session_factory = session_factory
        self.backoff_seconds = backoff_seconds

    async def dispatch_many(self, job_ids: list[uuid.UUID]) -> None:
        """Background-task entry point."""
        for job_id in job_ids:
            await self.dispatch(job_id)

    async def dispatch_due(self, limit: int = 50) -> dict[JobStatus, int]:
        """Sweep pending jobs left behind, e.g. when a worker died before dispatching."""
        async with self.session_factory() as db:
            job_ids = await JobsService(db).due_job_ids(limit=limit)
            await db.commit()

        outcome: dict[JobStatus, int] = {}
        for job_id in job_ids:
            status = await self.dispatch(job_id)
            outcome[status] = outcome.get(status, 0) + 1
        if job_ids:
            logger.info(f"[NOTIFY] swept {len(job_ids)} due jobs: {outcome}")
        return outcome

    async def dispatch(self, job_id: uuid.UUID, raise_on_failure: bool = False) -> JobStatus:
        """Attempt a job until it completes or runs out of attempts."""
        attempt = 0
        while True:
            attempt += 1
            async with self.session_factory() as db:
                jobs = JobsService(db)
                if not await jobs.claim_job(job_id):
                    job = await jobs.get(job_id)
                    await db.commit()
                    if job is None:
                        raise NotFound("Notification job not found")
                    return job.status

                job = await jobs.get(job_id)
                payload = dict(job.payload)
                receipts = await self._deliver(job.type, payload)
                for receipt in receipts:
                    db.add(self._log_row(job.id, job.type, job.attempts, payload, receipt))

                delivered = set(payload.get("delivered", []))
                delivered.update(r.recipient for r in receipts if r.ok)
                payload["delivered"] = sorted(delivered)
                failures = [r for r in receipts if not r.ok]

                if not failures:
                    await jobs.complete_job(job.id, payload)
                    await db.commit()
                    logger.info(f"[NOTIFY] job={job.id} type={job.type} delivered")
                    return JobStatus.COMPLETED

                await jobs.update_payload(job.id, payload)
                error = "; ".join(f"{r.recipient}: {r.error}" for r in failures)
                status = await jobs.fail_job(job.id, error)
                await db.commit()

            logger.warning(f"[NOTIFY] job={job_id} attempt {attempt} failed: {error}")
            if status != JobStatus.PENDING:
                logger.error(f"[NOTIFY] job={job_id} dead-lettered after {attempt} attempts")
                if raise_on_failure:
                    raise DeliveryFailed(f"Notification delivery failed: {error}")
                return status
            await asyncio.sleep(self.backoff_seconds * (2 ** (attempt - 1)))

    async def _deliver(self, job_type: str, payload: dict[str, Any]) -> list[DeliveryReceipt]:
        delivered = set(payload.get("delivered", []))
        meta = payload.get("meta", {})
        try:
            if job_type == SEND_INVITE:
                return await self.port.send_invite(payload["email"], payload["token"], meta)
            if job_type == SEND_CLAIM:
                return await self.port.send_claim(payload["email"], payload["token"], meta)
            if job_type == NOTIFY_STATUS_CHANGE:
                pending = [r for r in payload["recipients"] if r not in delivered]
                return await self.port.notify_status_change(
                    pending, payload["ticket"], payload["old_status"], payload["new_status"]
                )
            if job_type == NOTIFY_NEW_TICKET:
                pending = [r for r in payload["recipients"] if r not in delivered]
                return await self.port.notify_new_ticket(pending, payload["ticket"])
        except Exception as e:
            # Recorded as a failed attempt for every recipient
            logger.exception(f"[NOTIFY] adapter error for {job_type}")
            return [
                DeliveryReceipt(
                    recipient=payload.get("email") or ",".join(payload.get("recipients", [])),
                    channel=NotificationChannel.EMAIL,
                    subject=job_type,
                    ok=False,
                    error=str(e),
                )
            ]
        return [
            DeliveryReceipt(
                recipient="",
                channel=NotificationChannel.LOG,
                subject=job_type,
                ok=False,
                error=f"Unknown job type {job_type}",
            )
        ]

    @staticmethod
    def _log_row(
        job_id: uuid.UUID,
        job_type: str,
        attempt: int,
        payload: dict[str, Any],
        receipt: DeliveryReceipt,
    ) -> NotificationLog:
        ticket = payload.get("ticket") or {}
        return NotificationLog(
            job_id=job_id,
            notification_type=job_type,
            channel=receipt.channel,
            recipient_email=receipt.recipient[:255],
            subject=receipt.subject[:500],
            status=DeliveryStatus.SENT if receipt.ok else DeliveryStatus.FAILED,
            attempt=attempt,
            error_message=receipt.error,
            related_ticket_id=uuid.UUID(ticket["id"]) if ticket.get("id") else None,
        )


_dispatcher: Optional[NotificationDispatcher] = None


def get_dispatcher() -> NotificationDispatcher:
    """FastAPI dependency; overridden in tests."""
    global _dispatcher
    if _dispatcher is None:
        settings = get_settings()
        _dispatcher = NotificationDispatcher(
            port=get_notification_port(),
            session_factory=async_session_factory,
            backoff_seconds=settings.notification_backoff_seconds,
        )
    return _dispatcher


def schedule_dispatch(
    background_tasks: BackgroundTasks,
    db: AsyncSession,
    dispatcher: NotificationDispatcher,
) -> None:
    """Hand jobs enqueued on ``db`` to the dispatcher. Call only after commit."""
    job_ids = pop_enqueued_jobs(db)
    if job_ids:
        background_tasks.add_task(dispatcher.dispatch_many, job_ids)
