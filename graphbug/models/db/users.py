import uuid

from sqlalchemy import Column, String, TIMESTAMP, Uuid, text
from sqlalchemy.orm import relationship
from graphbug.core.database import Base

class User(Base):
    __tablename__ = 'users'

    user_id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String(255), nullable=False, unique=True)
    supabase_user_id = Column(Uuid, nullable=True)
    created_at = Column(TIMESTAMP, nullable=False, server_default=text("CURRENT_TIMESTAMP"))
    updated_at = Column(TIMESTAMP, nullable=False, server_default=text("CURRENT_TIMESTAMP"))

    github_installations = relationship("GithubInstallation", back_populates="user")
