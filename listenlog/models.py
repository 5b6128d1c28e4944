"""Database models for listenlog."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from listenlog.db import Base


def _new_job_id() -> str:
    return uuid4().hex


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(320), unique=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class AuthSession(Base):
    __tablename__ = "auth_sessions"

    id = Column(Integer, primary_key=True, index=True)
    token = Column(String(128), unique=True, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False)


class Listen(Base):
    """A single play event imported from a streaming-history export."""

    __tablename__ = "listens"
    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "ts",
            "track",
            "artist",
            "ms_played",
            name="uq_listens_user_play",
        ),
        Index("ix_listens_user_ts", "user_id", "ts"),
        Index("ix_listens_user_artist", "user_id", "artist"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    ts = Column(DateTime, nullable=False)
    artist = Column(String(512), nullable=True)
    track = Column(String(1024), nullable=True)
    album = Column(String(1024), nullable=True)
    ms_played = Column(Integer, nullable=False, default=0)
    reason_start = Column(String(64), nullable=True)
    reason_end = Column(String(64), nullable=True)
    shuffle = Column(Boolean, nullable=True)
    skipped = Column(Boolean, nullable=True)
    offline = Column(Boolean, nullable=True)
    incognito_mode = Column(Boolean, nullable=True)
    spotify_track_uri = Column(String(128), nullable=True)
    uploaded_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    spotify_track_id = Column(String(64), nullable=True, index=True)
    spotify_artist_id = Column(String(64), nullable=True)
    album_name = Column(String(1024), nullable=True)
    release_date = Column(String(16), nullable=True)
    popularity = Column(Integer, nullable=True)
    explicit = Column(Boolean, nullable=True)
    artist_genres = Column(JSON, nullable=True)
    artist_popularity = Column(Integer, nullable=True)
    album_image_url = Column(String(2048), nullable=True)
    enriched_at = Column(DateTime, nullable=True)


class JobStatus(str, Enum):
    """Lifecycle states shared by upload and file processing jobs."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class UploadJob(Base):
    __tablename__ = "upload_jobs"
    __table_args__ = (Index("ix_upload_jobs_user_created", "user_id", "created_at"),)

    id = Column(String(32), primary_key=True, default=_new_job_id)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    filename = Column(String(1024), nullable=False)
    status = Column(String(32), nullable=False, default=JobStatus.PENDING.value)
    total_files = Column(Integer, nullable=False, default=0)
    processed_files = Column(Integer, nullable=False, default=0)
    total_records = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )


class FileProcessingJob(Base):
    __tablename__ = "file_processing_jobs"
    __table_args__ = (Index("ix_file_jobs_status_created", "status", "created_at"),)

    id = Column(Integer, primary_key=True, index=True)
    upload_job_id = Column(
        String(32),
        ForeignKey("upload_jobs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    file_index = Column(Integer, nullable=False, default=0)
    total_files = Column(Integer, nullable=False, default=1)
    file_name = Column(String(1024), nullable=True)
    file_content = Column(Text, nullable=True)
    file_path = Column(String(2048), nullable=True)
    status = Column(String(32), nullable=False, default=JobStatus.PENDING.value)
    retry_count = Column(Integer, nullable=False, default=0)
    max_retries = Column(Integer, nullable=False, default=3)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)


class SpotifyToken(Base):
    __tablename__ = "spotify_tokens"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=True)
    expires_at = Column(DateTime, nullable=False)
    scope = Column(String(512), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )


__all__ = [
    "AuthSession",
    "FileProcessingJob",
    "JobStatus",
    "Listen",
    "SpotifyToken",
    "UploadJob",
    "User",
]
