import uuid

from sqlalchemy import Column, String, TIMESTAMP, text, ForeignKey, BigInteger, Boolean, JSON, Uuid
from sqlalchemy.orm import relationship
from graphbug.core.database import Base

# Placeholder for metadata that only the installation webhook can supply
PENDING = "pending"

class GithubInstallation(Base):
    __tablename__ = 'github_installations'

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    # GitHub's installation id; the key both the setup callback and webhooks agree on
    installation_id = Column(BigInteger, nullable=False, unique=True)
    user_id = Column(Uuid, ForeignKey('users.user_id', ondelete='CASCADE'), nullable=True)
    account_login = Column(String(255), nullable=False, default=PENDING)
    account_type = Column(String(255), nullable=False, default=PENDING)
    target_type = Column(String(255), nullable=False, default=PENDING)
    permissions = Column(JSON, nullable=True)
    repository_selection = Column(String(50), nullable=True)
    suspended = Column(Boolean, nullable=False, default=False)
    installed_at = Column(TIMESTAMP, nullable=False, server_default=text("CURRENT_TIMESTAMP"))
    updated_at = Column(TIMESTAMP, nullable=False, server_default=text("CURRENT_TIMESTAMP"))

    user = relationship("User", back_populates="github_installations")
    repositories = relationship(
        "Repository",
        back_populates="installation",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def is_pending(self) -> bool:
        return self.account_login == PENDING
