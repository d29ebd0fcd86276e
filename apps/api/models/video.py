"""Video model for gallery clips."""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Index, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func, expression

from database import Base


class Video(Base):
    """One clip in a (course, assignment) gallery.

    The primary key is the id assigned by the video hosting provider. A null
    ``duration`` means the provider has not finished processing the upload.
    There is deliberately no unique constraint on (user, course, assignment):
    the upload flow replaces the previous clip instead of upserting it.
    """
    
    __tablename__ = "videos"
    __table_args__ = (
        Index("ix_videos_gallery", "course_id", "assignment_id", "created_at"),
    )
    
    id = Column(String, primary_key=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    course_id = Column(String, nullable=False)
    assignment_id = Column(String, nullable=False)
    title = Column(String, nullable=False, default="")
    description = Column(Text, nullable=False, default="")
    url = Column(String, nullable=False, default="")  # optional project link
    duration = Column(Float, nullable=True)
    thumbnail_pct = Column(Float, nullable=False, default=0.5)
    hidden = Column(Boolean, nullable=False, default=False, server_default=expression.false())
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        server_default=func.now(),
        nullable=False,
    )
    
    # Relationships
    user = relationship("User", back_populates="videos")
    stars = relationship("Star", back_populates="video", cascade="all, delete-orphan", passive_deletes=True)
