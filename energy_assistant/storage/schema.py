"""Table definitions for users, devices, telemetry readings and chat history.

Identifiers are stored as 36-character UUID strings so the same metadata
works on PostgreSQL/TimescaleDB and on SQLite.
"""

from __future__ import annotations

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    MetaData,
    PrimaryKeyConstraint,
    String,
    Table,
    Text,
    func,
)

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
)

devices = Table(
    "devices",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("name", String(255), nullable=False),
    Column("type", String(64), nullable=False),
    Column(
        "user_id",
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column("metadata", JSON, key="device_metadata"),
)

telemetry_data = Table(
    "telemetry_data",
    metadata,
    Column(
        "device_id",
        String(36),
        ForeignKey("devices.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("timestamp", DateTime(timezone=True), nullable=False),
    Column("power_consumption", Float),
    Column("voltage", Float),
    Column("current", Float),
    Column("additional_metrics", JSON),
    PrimaryKeyConstraint("device_id", "timestamp"),
)

chat_messages = Table(
    "chat_messages",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE")),
    Column("session_id", String(36), nullable=False),
    Column("role", String(16), nullable=False),
    Column("content", Text, nullable=False),
    Column("metadata", JSON, key="message_metadata"),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Index("ix_chat_messages_session_created", "session_id", "created_at"),
    Index("ix_chat_messages_user_created", "user_id", "created_at"),
)
