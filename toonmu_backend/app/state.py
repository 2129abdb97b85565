import logging
import os
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, DateTime, String, Text, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .errors import PersistenceError
from .models import Job, JobStatus

logger = logging.getLogger("toonmu-backend")

Base = declarative_base()


class JobORM(Base):
    __tablename__ = "toon_creations"
    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    style_name = Column(Text, nullable=False)
    status = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    image_url = Column(Text)
    error_message = Column(Text)


def make_engine(database_url: str) -> Engine:
    if database_url.startswith("sqlite"):
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection, otherwise every session sees an empty db.
            return create_engine(
                database_url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        path = database_url.split("sqlite:///", 1)[-1]
        if os.path.dirname(path):
            os.makedirs(os.path.dirname(path), exist_ok=True)
        return create_engine(database_url, connect_args={"check_same_thread": False})
    return create_engine(database_url, pool_pre_ping=True)


class JobStore:
    """Persistence for generation jobs.

    A job is inserted as ``pending`` and moved exactly once to ``completed``
    or ``failed``. Terminal rows are never rewritten; repeating the same
    terminal write is accepted as a no-op so a retried call is harmless.
    """

    def __init__(self, engine: Engine):
        self.engine = engine
        # Keep attributes available after commit, rows are read outside the session.
        self.SessionLocal = sessionmaker(
            bind=engine,
            autoflush=False,
            autocommit=False,
            expire_on_commit=False,
        )

    @classmethod
    def from_url(cls, database_url: str) -> "JobStore":
        store = cls(make_engine(database_url))
        store.create_schema()
        return store

    def create_schema(self) -> None:
        Base.metadata.create_all(self.engine)

    def create(self, user_id: str, style_name: str) -> str:
        job_id = str(uuid.uuid4())
        try:
            with self.SessionLocal() as db:
                db.add(
                    JobORM(
                        id=job_id,
                        user_id=user_id,
                        style_name=style_name,
                        status=JobStatus.PENDING.value,
                        created_at=datetime.now(timezone.utc),
                    )
                )
                db.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"could not create job record: {e}") from e
        return job_id

    def mark_completed(self, job_id: str, image_url: str) -> None:
        self._finish(job_id, JobStatus.COMPLETED, image_url=image_url)

    def mark_failed(self, job_id: str, error_message: str) -> None:
        self._finish(job_id, JobStatus.FAILED, error_message=error_message)

    def get(self, job_id: str) -> Optional[Job]:
        try:
            with self.SessionLocal() as db:
                row = db.get(JobORM, job_id)
        except SQLAlchemyError as e:
            raise PersistenceError(f"could not read job {job_id}: {e}") from e
        if row is None:
            return None
        return Job.model_validate(row)

    def _finish(
        self,
        job_id: str,
        status: JobStatus,
        image_url: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> None:
        try:
            with self.SessionLocal() as db:
                row = db.get(JobORM, job_id, with_for_update=True)
                if row is None:
                    raise PersistenceError(f"job {job_id} not found")
                if row.status != JobStatus.PENDING.value:
                    if (
                        row.status == status.value
                        and row.image_url == image_url
                        and row.error_message == error_message
                    ):
                        logger.info("[%s] Repeated %s write ignored", job_id, status.value)
                        return
                    raise PersistenceError(
                        f"job {job_id} is already {row.status}; refusing {status.value}"
                    )
                row.status = status.value
                row.image_url = image_url
                row.error_message = error_message
                db.add(row)
                db.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"could not update job {job_id}: {e}") from e
