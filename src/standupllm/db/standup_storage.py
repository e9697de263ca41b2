"""Shadow issue references and personal-update drafts."""

from datetime import datetime
from typing import Any

from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy import JSON, DateTime, Integer, String, UniqueConstraint, create_engine, select
from sqlalchemy.orm import Mapped, mapped_column, sessionmaker

from standupllm.db.base import Base, as_utc, utcnow


class IssueReferenceRecord(Base):
    """Read-only display cache of an issue; Jira stays authoritative."""

    __tablename__ = "jira_issue_references"
    __table_args__ = (UniqueConstraint("user_id", "issue_key", name="uq_issue_reference_user_key"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(255), index=True)
    issue_key: Mapped[str] = mapped_column(String(64))
    issue_id: Mapped[str] = mapped_column(String(64))
    title: Mapped[str] = mapped_column(String(1024))
    status: Mapped[str] = mapped_column(String(255))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class PersonalUpdateDraftRecord(Base):
    __tablename__ = "personal_update_drafts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(255), index=True)
    project_key: Mapped[str | None] = mapped_column(String(64), nullable=True)
    issues: Mapped[list] = mapped_column(JSON)
    update: Mapped[dict] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class PersonalUpdateDraft(BaseModel):
    """Issues as of generation time plus the generated update."""

    id: int
    user_id: str
    project_key: str | None = None
    issues: list[dict[str, Any]] = Field(default_factory=list)
    update: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class StandupStorage:
    """Stores shadow references and drafts next to the credentials."""

    def __init__(self, agno_db=None, db_file: str | None = None, engine=None):
        if engine is None and agno_db is not None:
            engine = agno_db.db_engine
        if engine is None and db_file:
            engine = create_engine(f"sqlite:///{db_file}")
        if engine is None:
            raise ValueError("StandupStorage needs an agno_db, a db_file or an engine")

        self.engine = engine
        self.Session = sessionmaker(bind=engine)
        Base.metadata.create_all(engine, tables=[IssueReferenceRecord.__table__, PersonalUpdateDraftRecord.__table__])

    def upsert_issue_reference(self, user_id: str, issue_key: str, issue_id: str, title: str, status: str) -> None:
        with self.Session() as session:
            record = session.scalars(
                select(IssueReferenceRecord).where(
                    IssueReferenceRecord.user_id == user_id,
                    IssueReferenceRecord.issue_key == issue_key,
                )
            ).first()
            if record is None:
                record = IssueReferenceRecord(user_id=user_id, issue_key=issue_key)
                session.add(record)
            record.issue_id = issue_id
            record.title = title
            record.status = status
            record.updated_at = utcnow()
            session.commit()

    def create_personal_update_draft(
        self,
        user_id: str,
        project_key: str | None,
        issues: list[dict[str, Any]],
        update: dict[str, Any],
    ) -> PersonalUpdateDraft:
        """Store a new draft. The latest draft supersedes earlier ones."""
        with self.Session() as session:
            record = PersonalUpdateDraftRecord(
                user_id=user_id,
                project_key=project_key,
                issues=issues,
                update=update,
                created_at=utcnow(),
            )
            session.add(record)
            session.commit()
            draft = self._to_draft(record)

        logger.debug(f"Stored personal update draft {draft.id} for user {user_id} ({len(issues)} issues)")
        return draft

    def get_latest_personal_update_draft(self, user_id: str) -> PersonalUpdateDraft | None:
        with self.Session() as session:
            record = session.scalars(
                select(PersonalUpdateDraftRecord)
                .where(PersonalUpdateDraftRecord.user_id == user_id)
                .order_by(PersonalUpdateDraftRecord.created_at.desc(), PersonalUpdateDraftRecord.id.desc())
            ).first()
            return self._to_draft(record) if record else None

    @staticmethod
    def _to_draft(record: PersonalUpdateDraftRecord) -> PersonalUpdateDraft:
        return PersonalUpdateDraft(
            id=record.id,
            user_id=record.user_id,
            project_key=record.project_key,
            issues=list(record.issues or []),
            update=dict(record.update or {}),
            created_at=as_utc(record.created_at),
        )
