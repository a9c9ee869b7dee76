"""Jobs outbox service for async side effects.

Jobs are inserted in the same transaction as the change that caused them and
dispatched only after that transaction commits. Ids enqueued on a session are
remembered in ``session.info`` so the request handler can hand them to the
dispatcher once it has committed.
"""

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.jobs import JobsOutbox
from app.models.enums import JobStatus

PENDING_JOBS_KEY = "pending_job_ids"

# Payload keys holding bearer tokens; dropped once the job is done or dead
SECRET_PAYLOAD_KEYS = ("token", "link")


def scrub_secrets(payload: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in payload.items() if k not in SECRET_PAYLOAD_KEYS}


def has_secrets(payload: dict[str, Any]) -> bool:
    return any(key in payload for key in SECRET_PAYLOAD_KEYS)


def pop_enqueued_jobs(db: AsyncSession) -> list[uuid.UUID]:
    """Job ids enqueued on ``db`` since the last call."""
    return db.info.pop(PENDING_JOBS_KEY, [])


class JobsService:
    """Service for managing async jobs via outbox pattern."""

    def __init__(self, db: AsyncSession):
        self.db = db

    def _insert(self):
        dialect = self.db.get_bind().dialect.name
        return sqlite_insert if dialect == "sqlite" else pg_insert

    async def enqueue(
        self,
        job_type: str,
        payload: dict[str, Any],
        unique_scope: str,
        max_attempts: int = 3,
        run_after: Optional[datetime] = None,
    ) -> Optional[uuid.UUID]:
        """Enqueue a job with unique_scope de-duplication.

        If a job with the same unique_scope already exists, returns None.
        Otherwise returns the new job ID.
        """
        job_id = uuid.uuid4()
        now = datetime.utcnow()

        # INSERT ... ON CONFLICT DO NOTHING for idempotency
        stmt = self._insert()(JobsOutbox).values(
            id=job_id,
            type=job_type,
            payload=payload,
            status=JobStatus.PENDING,
            unique_scope=unique_scope,
            attempts=0,
            max_attempts=max_attempts,
            run_after=run_after or now,
            created_at=now,
        ).on_conflict_do_nothing(index_elements=["unique_scope"])

        result = await self.db.execute(stmt)

        # rowcount will be 0 if conflict occurred
        if result.rowcount == 0:
            return None

        self.db.info.setdefault(PENDING_JOBS_KEY, []).append(job_id)
        return job_id

    async def get(self, job_id: uuid.UUID) -> Optional[JobsOutbox]:
        result = await self.db.execute(
            select(JobsOutbox)
            .where(JobsOutbox.id == job_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_jobs(
        self,
        status: Optional[JobStatus] = None,
        limit: int = 100,
    ) -> list[JobsOutbox]:
        query = select(JobsOutbox)
        if status:
            query = query.where(JobsOutbox.status == status)
        query = query.order_by(JobsOutbox.created_at.desc()).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def claim_job(self, job_id: uuid.UUID) -> bool:
        """Move one pending job to PROCESSING and count the attempt.

        Returns False if another worker already holds it or it is finished.
        """
        result = await self.db.execute(
            update(JobsOutbox)
            .where(JobsOutbox.id == job_id, JobsOutbox.status == JobStatus.PENDING)
            .values(
                status=JobStatus.PROCESSING,
                started_at=datetime.utcnow(),
                attempts=JobsOutbox.attempts + 1,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def due_job_ids(
        self,
        job_type: Optional[str] = None,
        limit: int = 10,
    ) -> list[uuid.UUID]:
        """Pending jobs whose ``run_after`` has passed, oldest first."""
        query = (
            select(JobsOutbox.id)
            .where(
                JobsOutbox.status == JobStatus.PENDING,
                JobsOutbox.run_after <= datetime.utcnow(),
            )
        )
        if job_type:
            query = query.where(JobsOutbox.type == job_type)
        query = query.order_by(JobsOutbox.run_after).limit(limit)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def update_payload(self, job_id: uuid.UUID, payload: dict[str, Any]) -> None:
        await self.db.execute(
            update(JobsOutbox)
            .where(JobsOutbox.id == job_id)
            .values(payload=payload)
            .execution_options(synchronize_session=False)
        )

    async def complete_job(self, job_id: uuid.UUID, payload: dict[str, Any]) -> None:
        """Mark job as completed and drop secrets from its payload."""
        await self.db.execute(
            update(JobsOutbox)
            .where(JobsOutbox.id == job_id)
            .values(
                status=JobStatus.COMPLETED,
                completed_at=datetime.utcnow(),
                payload=scrub_secrets(payload),
                last_error=None,
            )
            .execution_options(synchronize_session=False)
        )

    async def fail_job(
        self,
        job_id: uuid.UUID,
        error: str,
        dead_letter: bool = False,
    ) -> JobStatus:
        """Mark job as failed.

        If dead_letter=True or max attempts reached, moves to DEAD_LETTER
        and drops secrets from the payload. Otherwise, resets to PENDING
        for retry.
        """
        job = await self.get(job_id)
        if not job:
            return JobStatus.FAILED

        values: dict[str, Any] = {"last_error": error}
        if dead_letter or job.attempts >= job.max_attempts:
            values["status"] = JobStatus.DEAD_LETTER
            values["payload"] = scrub_secrets(job.payload)
        else:
            values["status"] = JobStatus.PENDING

        await self.db.execute(
            update(JobsOutbox)
            .where(JobsOutbox.id == job_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return values["status"]

    async def reset_for_retry(self, job_id: uuid.UUID) -> None:
        """Give a failed or dead-lettered job a fresh attempt budget."""
        await self.db.execute(
            update(JobsOutbox)
            .where(JobsOutbox.id == job_id)
            .values(
                status=JobStatus.PENDING,
                attempts=0,
                run_after=datetime.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
