"""SQL metadata backend on SQLAlchemy 2.0 asyncio.

PostgreSQL through asyncpg in production, SQLite through aiosqlite in
tests. Each public method runs in its own transaction; database errors are
mapped to the storage error taxonomy at the session boundary.

Label assignment is an optimistic compare-and-swap:

    UPDATE deployments SET version = :expected + 1, current_package = :doc
    WHERE id = :id AND version = :expected

followed by the package insert in the same transaction. The unique
(deployment_id, label_number) constraint backs it up.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from sqlalchemy import delete, func, select, text, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from pushstore.core.model import (
    AccessKey,
    Account,
    App,
    CollaboratorProperties,
    Deployment,
    Package,
    Permission,
)
from pushstore.errors import (
    ConflictError,
    LabelConflict,
    NotFoundError,
    StorageError,
    UnavailableError,
)
from pushstore.persistence.base import (
    DeploymentRecord,
    MetadataBackend,
    package_blob_urls,
)
from pushstore.persistence.tables import (
    AccessKeyTable,
    AccountTable,
    AppTable,
    Base,
    CollaboratorTable,
    DeploymentTable,
    PackageBlobTable,
    PackageTable,
)

logger = logging.getLogger(__name__)


def create_engine_for(
    database_url: str,
    pool_size: int = 10,
    max_overflow: int = 20,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    echo: bool = False,
) -> AsyncEngine:
    """Create the async engine with pool settings where the dialect has a pool."""
    if database_url.startswith("sqlite"):
        return create_async_engine(database_url, echo=echo)
    return create_async_engine(
        database_url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_timeout=pool_timeout,
        pool_recycle=pool_recycle,  # Recycle connections after 30 minutes
        pool_pre_ping=True,  # Verify connection health
        echo=echo,
    )


class SqlMetadataBackend(MetadataBackend):
    """Metadata backend storing entities in relational tables."""

    backend_type = "sql"

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine
        self._session_factory = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    @classmethod
    def from_url(cls, database_url: str, **engine_options: Any) -> SqlMetadataBackend:
        return cls(create_engine_for(database_url, **engine_options))

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        """Provide a transactional scope, mapping database errors."""
        session = self._session_factory()
        try:
            yield session
            await session.commit()
        except StorageError:
            await session.rollback()
            raise
        except IntegrityError as exc:
            await session.rollback()
            raise ConflictError(f"Uniqueness violated: {exc.orig}") from exc
        except SQLAlchemyError as exc:
            await session.rollback()
            raise UnavailableError(f"Database error: {exc}") from exc
        finally:
            await session.close()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def initialize(self) -> None:
        """Create tables if they do not exist."""
        try:
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as exc:
            raise UnavailableError(f"Failed to create schema: {exc}") from exc

    async def ping(self) -> bool:
        try:
            async with self._session_factory() as session:
                await session.execute(text("SELECT 1"))
            return True
        except (SQLAlchemyError, OSError) as exc:
            logger.warning(f"Database ping failed: {exc}")
            return False

    async def close(self) -> None:
        await self._engine.dispose()

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    async def insert_account(self, account: Account) -> None:
        assert account.id is not None
        email_lower = account.email.lower()
        async with self._session() as session:
            existing = await session.scalar(
                select(AccountTable.id).where(AccountTable.email_lower == email_lower)
            )
            if existing is not None:
                raise ConflictError.for_entity("Account", account.email)
            session.add(
                AccountTable(
                    id=account.id,
                    email=account.email,
                    email_lower=email_lower,
                    doc=account.to_doc(),
                )
            )

    async def get_account(self, account_id: str) -> Account:
        async with self._session() as session:
            row = await session.get(AccountTable, account_id)
            if row is None:
                raise NotFoundError.for_entity("Account", account_id)
            return Account.model_validate(row.doc)

    async def get_account_by_email(self, email: str) -> Account:
        async with self._session() as session:
            row = await session.scalar(
                select(AccountTable).where(AccountTable.email_lower == email.lower())
            )
            if row is None:
                raise NotFoundError.for_entity("Account", email)
            return Account.model_validate(row.doc)

    async def update_account(self, account: Account) -> None:
        assert account.id is not None
        async with self._session() as session:
            row = await session.get(AccountTable, account.id)
            if row is None:
                raise NotFoundError.for_entity("Account", account.id)
            stored = Account.model_validate(row.doc)
            updated = account.model_copy(
                update={"email": stored.email, "created_time": stored.created_time}
            )
            row.doc = updated.to_doc()

    # -------------------------------------------------------------------------
    # Access keys
    # -------------------------------------------------------------------------

    async def insert_access_key(self, account_id: str, access_key: AccessKey) -> None:
        assert access_key.id is not None and access_key.name is not None
        async with self._session() as session:
            if await session.get(AccountTable, account_id) is None:
                raise NotFoundError.for_entity("Account", account_id)
            taken = await session.scalar(
                select(AccessKeyTable.id).where(AccessKeyTable.name == access_key.name)
            )
            if taken is not None:
                raise ConflictError("An access key with this name already exists")
            session.add(
                AccessKeyTable(
                    id=access_key.id,
                    account_id=account_id,
                    name=access_key.name,
                    doc=access_key.to_doc(),
                )
            )

    async def _owned_key(
        self, session: AsyncSession, account_id: str, access_key_id: str
    ) -> AccessKeyTable:
        row = await session.get(AccessKeyTable, access_key_id)
        if row is None or row.account_id != account_id:
            raise NotFoundError.for_entity("Access key", access_key_id)
        return row

    async def get_access_key(self, account_id: str, access_key_id: str) -> AccessKey:
        async with self._session() as session:
            row = await self._owned_key(session, account_id, access_key_id)
            return AccessKey.model_validate(row.doc)

    async def find_access_key_by_name(self, name: str) -> tuple[str, AccessKey]:
        async with self._session() as session:
            row = await session.scalar(select(AccessKeyTable).where(AccessKeyTable.name == name))
            if row is None:
                raise NotFoundError("Access key not found")
            return row.account_id, AccessKey.model_validate(row.doc)

    async def list_access_keys(self, account_id: str) -> list[AccessKey]:
        async with self._session() as session:
            if await session.get(AccountTable, account_id) is None:
                raise NotFoundError.for_entity("Account", account_id)
            rows = await session.scalars(
                select(AccessKeyTable).where(AccessKeyTable.account_id == account_id)
            )
            return [AccessKey.model_validate(row.doc) for row in rows]

    async def update_access_key(self, account_id: str, access_key: AccessKey) -> None:
        assert access_key.id is not None
        async with self._session() as session:
            row = await self._owned_key(session, account_id, access_key.id)
            # The secret itself is immutable
            row.doc = access_key.model_copy(update={"name": row.name}).to_doc()

    async def delete_access_key(self, account_id: str, access_key_id: str) -> None:
        async with self._session() as session:
            row = await self._owned_key(session, account_id, access_key_id)
            await session.delete(row)

    # -------------------------------------------------------------------------
    # Apps
    # -------------------------------------------------------------------------

    async def _load_app(self, session: AsyncSession, app_id: str) -> App:
        row = await session.get(AppTable, app_id)
        if row is None:
            raise NotFoundError.for_entity("App", app_id)

        collaborators = await session.scalars(
            select(CollaboratorTable).where(CollaboratorTable.app_id == app_id)
        )
        names = await session.scalars(
            select(DeploymentTable.name)
            .where(DeploymentTable.app_id == app_id)
            .order_by(DeploymentTable.position)
        )
        return App(
            id=row.id,
            name=row.name,
            created_time=row.created_time,
            collaborators={
                c.email: CollaboratorProperties(
                    account_id=c.account_id, permission=Permission(c.permission)
                )
                for c in collaborators
            },
            deployments=list(names),
        )

    @staticmethod
    def _collaborator_rows(app: App) -> list[CollaboratorTable]:
        assert app.id is not None
        return [
            CollaboratorTable(
                app_id=app.id,
                email=email,
                account_id=props.account_id,
                permission=props.permission.value,
            )
            for email, props in app.collaborators.items()
        ]

    async def insert_app(self, app: App) -> None:
        assert app.id is not None
        async with self._session() as session:
            if await session.get(AppTable, app.id) is not None:
                raise ConflictError.for_entity("App", app.id)
            session.add(AppTable(id=app.id, name=app.name, created_time=app.created_time))
            await session.flush()
            session.add_all(self._collaborator_rows(app))

    async def get_app(self, app_id: str) -> App:
        async with self._session() as session:
            return await self._load_app(session, app_id)

    async def list_apps(self, account_id: str) -> list[App]:
        async with self._session() as session:
            app_ids = await session.scalars(
                select(CollaboratorTable.app_id)
                .where(CollaboratorTable.account_id == account_id)
                .distinct()
            )
            return [await self._load_app(session, app_id) for app_id in list(app_ids)]

    async def update_app(self, app: App) -> None:
        assert app.id is not None
        async with self._session() as session:
            row = await session.get(AppTable, app.id)
            if row is None:
                raise NotFoundError.for_entity("App", app.id)
            row.name = app.name
            await session.execute(
                delete(CollaboratorTable).where(CollaboratorTable.app_id == app.id)
            )
            session.add_all(self._collaborator_rows(app))

    async def delete_app(self, app_id: str) -> None:
        async with self._session() as session:
            row = await session.get(AppTable, app_id)
            if row is None:
                raise NotFoundError.for_entity("App", app_id)
            deployment_ids = list(
                await session.scalars(
                    select(DeploymentTable.id).where(DeploymentTable.app_id == app_id)
                )
            )
            for deployment_id in deployment_ids:
                await self._delete_packages(session, deployment_id)
            await session.execute(delete(DeploymentTable).where(DeploymentTable.app_id == app_id))
            await session.execute(
                delete(CollaboratorTable).where(CollaboratorTable.app_id == app_id)
            )
            await session.delete(row)

    # -------------------------------------------------------------------------
    # Deployments
    # -------------------------------------------------------------------------

    @staticmethod
    def _to_record(row: DeploymentTable) -> DeploymentRecord:
        deployment = Deployment(
            id=row.id,
            app_id=row.app_id,
            name=row.name,
            key=row.key,
            created_time=row.created_time,
            package=Package.model_validate(row.current_package) if row.current_package else None,
        )
        return DeploymentRecord(deployment=deployment, version=row.version)

    async def _deployment_row(self, session: AsyncSession, deployment_id: str) -> DeploymentTable:
        row = await session.get(DeploymentTable, deployment_id)
        if row is None:
            raise NotFoundError.for_entity("Deployment", deployment_id)
        return row

    async def insert_deployment(self, app_id: str, deployment: Deployment) -> None:
        assert deployment.id is not None and deployment.key is not None
        async with self._session() as session:
            if await session.get(AppTable, app_id) is None:
                raise NotFoundError.for_entity("App", app_id)
            same_name = await session.scalar(
                select(DeploymentTable.id).where(
                    DeploymentTable.app_id == app_id, DeploymentTable.name == deployment.name
                )
            )
            if same_name is not None:
                raise ConflictError.for_entity("Deployment", deployment.name)
            same_key = await session.scalar(
                select(DeploymentTable.id).where(DeploymentTable.key == deployment.key)
            )
            if same_key is not None:
                raise ConflictError("Deployment key already in use")

            position = await session.scalar(
                select(func.coalesce(func.max(DeploymentTable.position), -1)).where(
                    DeploymentTable.app_id == app_id
                )
            )
            session.add(
                DeploymentTable(
                    id=deployment.id,
                    app_id=app_id,
                    name=deployment.name,
                    key=deployment.key,
                    position=(position if position is not None else -1) + 1,
                    version=0,
                    current_package=None,
                    created_time=deployment.created_time,
                )
            )

    async def get_deployment(self, deployment_id: str) -> DeploymentRecord:
        async with self._session() as session:
            return self._to_record(await self._deployment_row(session, deployment_id))

    async def get_deployment_by_key(self, deployment_key: str) -> DeploymentRecord:
        async with self._session() as session:
            row = await session.scalar(
                select(DeploymentTable).where(DeploymentTable.key == deployment_key)
            )
            if row is None:
                raise NotFoundError("Deployment key not found")
            return self._to_record(row)

    async def list_deployments(self, app_id: str) -> list[Deployment]:
        async with self._session() as session:
            if await session.get(AppTable, app_id) is None:
                raise NotFoundError.for_entity("App", app_id)
            rows = await session.scalars(
                select(DeploymentTable)
                .where(DeploymentTable.app_id == app_id)
                .order_by(DeploymentTable.position)
            )
            return [self._to_record(row).deployment for row in rows]

    async def update_deployment(self, deployment: Deployment) -> None:
        assert deployment.id is not None
        async with self._session() as session:
            row = await self._deployment_row(session, deployment.id)
            if deployment.name != row.name:
                clash = await session.scalar(
                    select(DeploymentTable.id).where(
                        DeploymentTable.app_id == row.app_id,
                        DeploymentTable.name == deployment.name,
                    )
                )
                if clash is not None:
                    raise ConflictError.for_entity("Deployment", deployment.name)
                row.name = deployment.name
            if deployment.key and deployment.key != row.key:
                clash = await session.scalar(
                    select(DeploymentTable.id).where(DeploymentTable.key == deployment.key)
                )
                if clash is not None:
                    raise ConflictError("Deployment key already in use")
                row.key = deployment.key

    async def delete_deployment(self, deployment_id: str) -> None:
        async with self._session() as session:
            row = await self._deployment_row(session, deployment_id)
            await self._delete_packages(session, deployment_id)
            await session.delete(row)

    # -------------------------------------------------------------------------
    # Package histories
    # -------------------------------------------------------------------------

    async def _delete_packages(self, session: AsyncSession, deployment_id: str) -> None:
        package_ids = select(PackageTable.id).where(PackageTable.deployment_id == deployment_id)
        await session.execute(
            delete(PackageBlobTable).where(PackageBlobTable.package_id.in_(package_ids))
        )
        await session.execute(
            delete(PackageTable).where(PackageTable.deployment_id == deployment_id)
        )

    async def get_package_history(self, deployment_id: str) -> list[Package]:
        async with self._session() as session:
            await self._deployment_row(session, deployment_id)
            rows = await session.scalars(
                select(PackageTable)
                .where(PackageTable.deployment_id == deployment_id)
                .order_by(PackageTable.label_number)
            )
            return [Package.model_validate(row.doc) for row in rows]

    async def append_package(
        self, deployment_id: str, package: Package, expected_version: int
    ) -> Package:
        label_number = package.label_number
        if label_number is None:
            raise ValueError(f"Package label {package.label!r} is not a valid label")

        doc = package.to_doc()
        async with self._session() as session:
            result = await session.execute(
                update(DeploymentTable)
                .where(
                    DeploymentTable.id == deployment_id,
                    DeploymentTable.version == expected_version,
                )
                .values(version=expected_version + 1, current_package=doc)
            )
            if result.rowcount != 1:
                await self._deployment_row(session, deployment_id)
                raise LabelConflict(deployment_id, expected_version)

            row = PackageTable(deployment_id=deployment_id, label_number=label_number, doc=doc)
            session.add(row)
            try:
                await session.flush()
            except IntegrityError as exc:
                raise LabelConflict(deployment_id, expected_version) from exc
            session.add_all(
                PackageBlobTable(package_id=row.id, url=url) for url in package_blob_urls(package)
            )

        logger.debug(f"Appended {package.label} to deployment {deployment_id}")
        return Package.model_validate(doc)

    async def clear_package_history(self, deployment_id: str) -> None:
        async with self._session() as session:
            row = await self._deployment_row(session, deployment_id)
            await self._delete_packages(session, deployment_id)
            row.current_package = None

    async def is_blob_url_referenced(self, blob_url: str) -> bool:
        async with self._session() as session:
            found = await session.scalar(
                select(PackageBlobTable.package_id).where(PackageBlobTable.url == blob_url).limit(1)
            )
            return found is not None
