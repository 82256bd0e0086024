"""SQLAlchemy ORM models for the SQL metadata backend.

Entities are stored as JSON documents (`doc`, JSONB on PostgreSQL) next to
the scalar columns that carry uniqueness constraints and lookups:
- accounts.email_lower: case-insensitive email uniqueness
- access_keys.name: the secret token, globally unique
- deployments.key / (app_id, name): deployment key and name uniqueness
- packages.(deployment_id, label_number): one package per label

deployments.version is the label high-water mark; commits compare-and-swap
on it.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
DocType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class AccountTable(Base):
    """Registered accounts."""

    __tablename__ = "accounts"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    email: Mapped[str] = mapped_column(Text, nullable=False)
    email_lower: Mapped[str] = mapped_column(Text, unique=True, nullable=False, index=True)
    doc: Mapped[dict[str, Any]] = mapped_column(DocType, nullable=False)


class AccessKeyTable(Base):
    """Access keys; `name` is the secret presented by clients."""

    __tablename__ = "access_keys"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    account_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("accounts.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    doc: Mapped[dict[str, Any]] = mapped_column(DocType, nullable=False)


class AppTable(Base):
    """Applications."""

    __tablename__ = "apps"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    created_time: Mapped[int | None] = mapped_column(BigInteger, nullable=True)


class CollaboratorTable(Base):
    """Collaborator map entries, one row per (app, email)."""

    __tablename__ = "collaborators"

    app_id: Mapped[str] = mapped_column(String(64), ForeignKey("apps.id"), primary_key=True)
    email: Mapped[str] = mapped_column(Text, primary_key=True)
    account_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    permission: Mapped[str] = mapped_column(String(32), nullable=False)


class DeploymentTable(Base):
    """Deployments with their commit counter and current package snapshot."""

    __tablename__ = "deployments"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    app_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("apps.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    key: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    # Insertion order within the app
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    current_package: Mapped[dict[str, Any] | None] = mapped_column(DocType, nullable=True)
    created_time: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    __table_args__ = (UniqueConstraint("app_id", "name", name="uq_deployments_app_name"),)


class PackageTable(Base):
    """Package history entries."""

    __tablename__ = "packages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    deployment_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("deployments.id"), nullable=False
    )
    label_number: Mapped[int] = mapped_column(Integer, nullable=False)
    doc: Mapped[dict[str, Any]] = mapped_column(DocType, nullable=False)

    __table_args__ = (
        UniqueConstraint("deployment_id", "label_number", name="uq_packages_label"),
        Index("ix_packages_deployment_label", "deployment_id", "label_number"),
    )


class PackageBlobTable(Base):
    """Blob urls referenced by a package (payload, manifest, diffs)."""

    __tablename__ = "package_blobs"

    package_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("packages.id"), primary_key=True
    )
    url: Mapped[str] = mapped_column(Text, primary_key=True)

    __table_args__ = (Index("ix_package_blobs_url", "url"),)
