"""Encrypted per-user Jira OAuth credentials.

One row per user; every write replaces the whole credential (refresh tokens
are single-use, so a partial update would leave a dead token behind).
"""

from datetime import datetime

from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy import DateTime, String, Text, create_engine, delete, select
from sqlalchemy.orm import Mapped, mapped_column, sessionmaker

from standupllm.db.base import Base, as_utc, utcnow
from standupllm.db.encryption import TokenEncryptor


class Credential(BaseModel):
    """A user's OAuth grant for one Jira Cloud site."""

    user_id: str = Field(..., description="Owning user id")
    cloud_id: str = Field(..., description="Jira Cloud instance id")
    site_url: str = Field(..., description="Jira site host, e.g. acme.atlassian.net")
    access_token: str = Field(..., repr=False)
    refresh_token: str = Field(..., repr=False)
    expires_at: datetime = Field(..., description="Absolute access-token expiry (UTC)")


class JiraCredentialRecord(Base):
    __tablename__ = "jira_credentials"

    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    cloud_id: Mapped[str] = mapped_column(String(255))
    site_url: Mapped[str] = mapped_column(String(512))
    access_token: Mapped[str] = mapped_column(Text)
    refresh_token: Mapped[str] = mapped_column(Text)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class TokenStorage:
    """Credential store backed by SQLAlchemy.

    Shares the engine of an agno ``SqliteDb`` when one is given so the agent
    sessions and the credentials live in the same database file.
    """

    def __init__(self, agno_db=None, db_file: str | None = None, encryption_key: str | None = None, engine=None):
        """Initialize token storage.

        Args:
            agno_db: agno SqliteDb whose engine is reused
            db_file: SQLite file path, used when no agno_db/engine is given
            encryption_key: Fernet key (defaults to STANDUPLLM_TOKEN_ENCRYPTION_KEY)
            engine: Explicit SQLAlchemy engine

        Raises:
            EncryptionKeyMissingError: If no encryption key is available
            ValueError: If no database is given
        """
        if engine is None and agno_db is not None:
            engine = agno_db.db_engine
        if engine is None and db_file:
            engine = create_engine(f"sqlite:///{db_file}")
        if engine is None:
            raise ValueError("TokenStorage needs an agno_db, a db_file or an engine")

        self.engine = engine
        self.db_path = str(engine.url.database or "")
        self.Session = sessionmaker(bind=engine)
        self._encryptor = TokenEncryptor(encryption_key)

        Base.metadata.create_all(engine, tables=[JiraCredentialRecord.__table__])
        logger.debug(f"TokenStorage ready at {self.db_path}")

    def _to_credential(self, record: JiraCredentialRecord) -> Credential:
        return Credential(
            user_id=record.user_id,
            cloud_id=record.cloud_id,
            site_url=record.site_url,
            access_token=self._encryptor.decrypt(record.access_token),
            refresh_token=self._encryptor.decrypt(record.refresh_token),
            expires_at=as_utc(record.expires_at),
        )

    def get_jira_credential(self, user_id: str) -> Credential | None:
        with self.Session() as session:
            record = session.get(JiraCredentialRecord, user_id)
            if record is None:
                logger.debug(f"No Jira credential stored for user {user_id}")
                return None
            return self._to_credential(record)

    def upsert_jira_credential(self, credential: Credential) -> Credential:
        """Store ``credential``, replacing any previous one for the same user."""
        with self.Session() as session:
            record = session.get(JiraCredentialRecord, credential.user_id)
            if record is None:
                record = JiraCredentialRecord(user_id=credential.user_id)
                session.add(record)

            record.cloud_id = credential.cloud_id
            record.site_url = credential.site_url
            record.access_token = self._encryptor.encrypt(credential.access_token)
            record.refresh_token = self._encryptor.encrypt(credential.refresh_token)
            record.expires_at = credential.expires_at
            record.updated_at = utcnow()
            session.commit()

        logger.info(f"Stored Jira credential for user {credential.user_id} ({credential.site_url})")
        return credential

    def delete_jira_credential(self, user_id: str) -> bool:
        with self.Session() as session:
            result = session.execute(delete(JiraCredentialRecord).where(JiraCredentialRecord.user_id == user_id))
            session.commit()
        deleted = result.rowcount > 0
        if deleted:
            logger.info(f"Deleted Jira credential for user {user_id}")
        return deleted

    def list_jira_credentials(self) -> list[JiraCredentialRecord]:
        """Raw rows (tokens still encrypted), most recently updated first."""
        with self.Session() as session:
            rows = session.scalars(select(JiraCredentialRecord).order_by(JiraCredentialRecord.updated_at.desc())).all()
            session.expunge_all()
            return list(rows)
