"""catalog-compliance service entry point.

``create_app`` builds the FastAPI application around the two collaborators
the engine never implements itself: the catalog client (product reads and
mutations) and the plan policy provider (entitlements, retention, quota).

On startup the lifespan:
- configures structured logging
- initializes the database and ensures the schema, or falls back to
  in-memory repositories when no database URL is configured
- selects the webhook notifier
- wires the ComplianceEngine onto ``app.state.engine``
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from catalog_compliance.adapters.database import close_database, create_schema, get_session_factory, init_database
from catalog_compliance.adapters.memory import (
    InMemoryAuditRepository,
    InMemoryBaselineRepository,
    InMemoryDriftRepository,
    InMemoryFieldVersionRepository,
    InMemoryReportRepository,
)
from catalog_compliance.adapters.notifier import HttpNotifier, NullNotifier
from catalog_compliance.adapters.repositories import (
    SQLAuditRepository,
    SQLBaselineRepository,
    SQLDriftRepository,
    SQLFieldVersionRepository,
    SQLReportRepository,
)
from catalog_compliance.api.router import router
from catalog_compliance.core.engine import ComplianceEngine
from catalog_compliance.core.interfaces import ICatalogClient, INotifier, IPlanPolicyProvider
from catalog_compliance.errors import (
    CatalogClientError,
    CatalogComplianceError,
    DataIntegrityError,
    EntitlementError,
    NotFoundError,
    QuotaExceededError,
    ValidationError,
)
from catalog_compliance.observability import configure_logging, get_logger
from catalog_compliance.settings import Settings

logger = get_logger(__name__)

_STATUS_BY_ERROR: tuple[tuple[type[CatalogComplianceError], int], ...] = (
    (NotFoundError, 404),
    (ValidationError, 422),
    (EntitlementError, 402),
    (QuotaExceededError, 429),
    (CatalogClientError, 502),
    (DataIntegrityError, 500),
)


def _status_for(exc: CatalogComplianceError) -> int:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status
    return 500


async def handle_engine_error(request: Request, exc: CatalogComplianceError) -> JSONResponse:
    """Translate an engine error into ``{"error": code, "message": ...}``."""
    status = _status_for(exc)
    if status >= 500:
        logger.error("Request failed", path=request.url.path, error=exc.code, message=exc.message)
    return JSONResponse(status_code=status, content={"error": exc.code, "message": exc.message})


def build_engine(
    settings: Settings,
    catalog_client: ICatalogClient,
    plan_provider: IPlanPolicyProvider,
    notifier: INotifier,
) -> ComplianceEngine:
    """Wire a ComplianceEngine on the configured repositories.

    Uses SQL repositories when ``init_database`` has been called for
    ``settings.database_url``, in-memory repositories otherwise.
    """
    if settings.database_url:
        factory = get_session_factory()
        repos = (
            SQLAuditRepository(factory),
            SQLBaselineRepository(factory),
            SQLFieldVersionRepository(factory),
            SQLDriftRepository(factory),
            SQLReportRepository(factory),
        )
    else:
        repos = (
            InMemoryAuditRepository(),
            InMemoryBaselineRepository(),
            InMemoryFieldVersionRepository(),
            InMemoryDriftRepository(),
            InMemoryReportRepository(),
        )
    audit_repo, baseline_repo, version_repo, drift_repo, report_repo = repos
    return ComplianceEngine.build(
        catalog=catalog_client,
        plans=plan_provider,
        notifier=notifier,
        audit_repo=audit_repo,
        baseline_repo=baseline_repo,
        version_repo=version_repo,
        drift_repo=drift_repo,
        report_repo=report_repo,
        settings=settings,
    )


def create_app(
    catalog_client: ICatalogClient,
    plan_provider: IPlanPolicyProvider,
    notifier: INotifier | None = None,
    settings: Settings | None = None,
) -> FastAPI:
    """Create the catalog-compliance FastAPI application.

    Args:
        catalog_client: Reads product snapshots and applies mutations.
        plan_provider: Looks up the PlanPolicy of a tenant.
        notifier: Notification channel. Defaults to an HttpNotifier when a
            webhook URL is configured and to a NullNotifier otherwise.
        settings: Service settings. Defaults to the environment.

    Returns:
        The application, with every route mounted under /api/v1.
    """
    settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Manage application startup and shutdown.

        Args:
            app: The FastAPI application instance.

        Yields:
            None
        """
        configure_logging(settings.log_level, settings.json_logs)

        if settings.database_url:
            init_database(
                settings.database_url,
                pool_size=settings.db_pool_size,
                max_overflow=settings.db_max_overflow,
                pool_timeout=settings.db_pool_timeout,
            )
            await create_schema()
        else:
            logger.warning("No database URL configured, using in-memory repositories")

        channel = notifier
        if channel is None:
            if settings.notification_webhook_url:
                channel = HttpNotifier(settings.notification_webhook_url, timeout_ms=settings.notification_timeout_ms)
            else:
                channel = NullNotifier()

        app.state.settings = settings
        app.state.engine = build_engine(settings, catalog_client, plan_provider, channel)
        logger.info("Catalog compliance startup complete", service=settings.service_name)

        yield

        logger.info("Shutting down catalog compliance")
        if settings.database_url:
            await close_database()

    app = FastAPI(title=settings.service_name, version="0.1.0", lifespan=lifespan)
    app.add_exception_handler(CatalogComplianceError, handle_engine_error)
    app.include_router(router, prefix="/api/v1")
    return app
