"""User model."""

from sqlalchemy import Column, String, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class User(Base):
    """Signed-in identity, keyed by the identity provider's stable subject id."""
    
    __tablename__ = "users"
    
    id = Column(String, primary_key=True)  # provider 'sub' claim
    email = Column(String, unique=True, nullable=False, index=True)
    name = Column(String, nullable=False)
    picture = Column(String, nullable=True)
    hosted_domain = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
    
    # Relationships
    videos = relationship("Video", back_populates="user", passive_deletes=True)
    stars = relationship("Star", back_populates="user", passive_deletes=True)
