"""Star model: one viewer starring one clip."""

from sqlalchemy import Column, DateTime, ForeignKey, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class Star(Base):
    """Join row between a user and a video they starred."""

    __tablename__ = "stars"

    user_id = Column(String, ForeignKey("users.id"), primary_key=True)
    video_id = Column(String, ForeignKey("videos.id", ondelete="CASCADE"), primary_key=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User", back_populates="stars")
    video = relationship("Video", back_populates="stars")
