import enum
import uuid

from sqlalchemy import Column, String, TIMESTAMP, text, ForeignKey, BigInteger, Boolean, Uuid, UniqueConstraint, CheckConstraint
from sqlalchemy.orm import relationship
from graphbug.core.database import Base


class IngestionStatus(str, enum.Enum):
    NOT_STARTED = "not_started"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Repository(Base):
    __tablename__ = 'repositories'

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    installation_id = Column(
        Uuid,
        ForeignKey('github_installations.id', ondelete='CASCADE'),
        nullable=False,
        index=True,
    )
    github_repo_id = Column(BigInteger, nullable=True)
    name = Column(String(255), nullable=False)
    full_name = Column(String(255), nullable=False)
    private = Column(Boolean, nullable=False, default=False)
    added_at = Column(TIMESTAMP, nullable=False, server_default=text("CURRENT_TIMESTAMP"))

    # Ingestion tracking, written only by IngestionService
    ingestion_status = Column(String(20), nullable=False, default=IngestionStatus.NOT_STARTED.value)
    ingestion_started_at = Column(TIMESTAMP, nullable=True)
    ingestion_completed_at = Column(TIMESTAMP, nullable=True)
    ingestion_error = Column(String, nullable=True)
    last_synced_at = Column(TIMESTAMP, nullable=True)

    __table_args__ = (
        UniqueConstraint('installation_id', 'full_name', name='uq_repository_installation_full_name'),
        CheckConstraint(
            "ingestion_status IN ('not_started', 'processing', 'completed', 'failed')",
            name='ck_repository_ingestion_status',
        ),
        CheckConstraint(
            "ingestion_status != 'processing' OR ingestion_completed_at IS NULL",
            name='ck_repository_processing_not_completed',
        ),
        CheckConstraint(
            "ingestion_status != 'failed' OR ingestion_error IS NOT NULL",
            name='ck_repository_failed_has_error',
        ),
    )

    installation = relationship("GithubInstallation", back_populates="repositories")
