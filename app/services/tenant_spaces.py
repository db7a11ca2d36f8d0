"""
Tenant Space Manager

Allocates, opens and drops the isolated storage of each tenant. Two layouts
are supported, picked from TENANT_DATABASE_URL:

- SQLite: the URL is a template containing {slug}; every tenant gets its own
  database file.
- PostgreSQL: the URL points at one database; every tenant gets its own
  schema and tenant tables are addressed through schema_translate_map.

Callers never hold a "current tenant": they pass a TenantContext and get a
session bound to that tenant's storage for the duration of a `with` block.
"""
import logging
import os
import re
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker

from app.models.tenant_space import TenantBase

logger = logging.getLogger(__name__)

_SCHEMA_SAFE = re.compile(r'[^a-z0-9_]')


@dataclass(frozen=True)
class TenantContext:
    """Explicit handle on one tenant, passed into every tenant-scoped call."""
    slug: str


class TenantSpaceManager:
    """Owns one SQLAlchemy engine per tenant space."""

    def __init__(self, app=None):
        self.url_template = None
        self.schema_prefix = 'tenant_'
        self._engines: Dict[str, Engine] = {}
        self._shared_engine: Optional[Engine] = None
        self._lock = threading.Lock()
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        self.url_template = app.config['TENANT_DATABASE_URL']
        self.schema_prefix = app.config.get('TENANT_SCHEMA_PREFIX', 'tenant_')
        self.dispose()
        app.extensions['tenant_spaces'] = self

    # ------------------------------------------------------------------
    # Layout helpers
    # ------------------------------------------------------------------

    @property
    def uses_schemas(self) -> bool:
        return make_url(self.url_template.replace('{slug}', 'x')).get_backend_name() == 'postgresql'

    def schema_name(self, slug: str) -> str:
        return self.schema_prefix + _SCHEMA_SAFE.sub('_', slug.lower())

    def _sqlite_path(self, slug: str) -> Optional[str]:
        url = make_url(self.url_template.replace('{slug}', slug))
        return url.database

    def _engine(self, slug: str) -> Engine:
        if self.uses_schemas:
            return self._shared_or_create().execution_options(
                schema_translate_map={None: self.schema_name(slug)}
            )

        with self._lock:
            engine = self._engines.get(slug)
            if engine is None:
                engine = create_engine(
                    self.url_template.replace('{slug}', slug),
                    connect_args={"check_same_thread": False},
                )
                self._engines[slug] = engine
            return engine

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def exists(self, slug: str) -> bool:
        if self.uses_schemas:
            with self._shared_or_create().connect() as conn:
                found = conn.execute(
                    text("SELECT 1 FROM information_schema.schemata WHERE schema_name = :name"),
                    {"name": self.schema_name(slug)},
                ).first()
            return found is not None

        path = self._sqlite_path(slug)
        return bool(path) and os.path.exists(path)

    def allocate(self, slug: str) -> None:
        """
        Create the tenant's space and its tables.

        Raises:
            FileExistsError: a space for this slug already exists (left over
                from a failed teardown); it is never reused silently.
        """
        if self.exists(slug):
            raise FileExistsError(f"Tenant space for '{slug}' already exists")

        if self.uses_schemas:
            schema = self.schema_name(slug)
            with self._shared_or_create().begin() as conn:
                conn.execute(text(f'CREATE SCHEMA "{schema}"'))
        else:
            path = self._sqlite_path(slug)
            directory = os.path.dirname(path)
            if directory:
                os.makedirs(directory, exist_ok=True)

        TenantBase.metadata.create_all(self._engine(slug))
        logger.info("Tenant space allocated", extra={"tenant": slug})

    def drop(self, slug: str) -> None:
        """Remove the tenant's space. Dropping a space that does not exist is a no-op."""
        if self.uses_schemas:
            schema = self.schema_name(slug)
            with self._shared_or_create().begin() as conn:
                conn.execute(text(f'DROP SCHEMA IF EXISTS "{schema}" CASCADE'))
        else:
            with self._lock:
                engine = self._engines.pop(slug, None)
            if engine is not None:
                engine.dispose()
            path = self._sqlite_path(slug)
            if path and os.path.exists(path):
                os.remove(path)
        logger.info("Tenant space dropped", extra={"tenant": slug})

    def _shared_or_create(self) -> Engine:
        with self._lock:
            if self._shared_engine is None:
                self._shared_engine = create_engine(self.url_template, pool_pre_ping=True)
            return self._shared_engine

    def dispose(self):
        with self._lock:
            for engine in self._engines.values():
                engine.dispose()
            self._engines.clear()
            if self._shared_engine is not None:
                self._shared_engine.dispose()
                self._shared_engine = None

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    @contextmanager
    def session(self, ctx: TenantContext):
        """
        Open a session on the tenant's space. Commits on success, rolls back
        on error.

        Usage:
            with tenant_spaces.session(ctx) as session:
                session.add(Board(...))
        """
        factory = sessionmaker(bind=self._engine(ctx.slug), expire_on_commit=False)
        session: Session = factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
