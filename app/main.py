from fastapi import FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from timing_asgi import TimingMiddleware, TimingClient  # type: ignore
from timing_asgi.integrations import StarletteScopeToName  # type: ignore

from app.core import config
from app.core.database.engine import init_db
from app.core.errors import AppError
from app.features.users.routes import router as user_router
from app.features.organizations.routes import router as organization_router
from app.features.organizations.routes import admin_router as admin_organization_router
from app.features.permissions.routes import router as organization_role_router
from app.features.platform_rbac.routes import router as platform_rbac_router
from app.features.plans.routes import router as plan_router
from app.features.subscriptions.routes import org_router as subscription_router
from app.features.subscriptions.routes import admin_router as admin_subscription_router
from app.features.audit.routes import org_router as audit_router
from app.features.audit.routes import admin_router as admin_audit_router
from app.features.crm.routes import router as crm_router
from app.features.finance.routes import router as finance_router
from app.features.invitations.routes import router as invitation_router
from app.features.analytics.routes import router as analytics_router
from app.features.users.dependencies import get_authorization_header
from app.utils import get_logger


log = get_logger(__name__)
log.info("Initializing server")
app = FastAPI(
    title="SaaS Admin Backend",
    description="Multi-tenant organizations, RBAC and subscription lifecycle",
    version="0.1.0",
    docs_url="/docs" if config.ENABLE_DOCS else None,
    redoc_url="/redoc" if config.ENABLE_DOCS else None,
    openapi_url="/openapi.json" if config.ENABLE_DOCS else None
)
limiter = Limiter(key_func=get_authorization_header, default_limits=[config.RATE_LIMIT])
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)


class PrintTimings(TimingClient):
    def timing(self, metric_name, timing, tags):
        log.debug(dict(route=metric_name.removeprefix("main.app.features."), timing=timing, tags=tags))


app.add_middleware(TimingMiddleware, client=PrintTimings(), metric_namer=StarletteScopeToName("main", app))

if config.ENABLE_DOCS:
    log.warning("Docs enabled")
if config.ALLOW_ORIGIN:
    log.warning("Setting allow origin to %s", config.ALLOW_ORIGIN)
    origins = [config.ALLOW_ORIGIN]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.exception_handler(AppError)
async def app_error_handler(_request: Request, exc: AppError):
    if exc.status_code >= 500:
        log.error("%s: %s", exc.code, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"code": exc.code, "message": exc.message}},
        headers=exc.headers,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(_request: Request, exc: RequestValidationError):
    errors = dict()
    for error in exc.errors():
        if "loc" not in error or "msg" not in error:
            continue
        key = error["loc"][-1]
        if key == "__root__":
            key = "root"
        errors[key] = error["msg"]
    log.info("Request validation error %s", errors)
    return JSONResponse(status_code=400, content=jsonable_encoder(errors))


@app.exception_handler(RateLimitExceeded)
def rate_limit_exceeded_handler(_request: Request, _exc: RateLimitExceeded) -> Response:
    return JSONResponse({"error": {"code": "RATE_LIMITED", "message": "You are going too fast"}}, status_code=429)


@app.on_event("startup")
async def startup():
    """Initialize database on application startup."""
    log.info("Initializing database...")
    await init_db()
    log.info("Database initialized successfully")


@app.get("/")
async def root():
    """Root endpoint - API health check."""
    return {
        "message": "SaaS Admin Backend API",
        "version": "0.1.0",
        "status": "online",
        "docs": "/docs" if config.ENABLE_DOCS else None,
        "authentication": {
            "info": "Protected endpoints require Bearer token in Authorization header",
            "public_endpoints": ["/", "/health", "/plans/public"]
        },
        "features": {
            "organizations": "Tenants, memberships, ownership transfer and custom roles",
            "invitations": "Invite by email, accept by token",
            "platform_rbac": "Admin panel roles and permissions",
            "plans": "Plan catalog",
            "subscriptions": "Subscription lifecycle with history and KPIs",
            "analytics": "Revenue, plan mix and churn for the admin dashboard",
            "audit": "Append-only audit trail",
            "crm": "Leads",
            "finance": "Income and expense entries"
        }
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


# Include routers
app.include_router(user_router, prefix="/users", tags=["users"])

# Organization routes; custom roles and audit logs live under the same prefix
app.include_router(organization_router, prefix="/organizations", tags=["organizations"])
app.include_router(organization_role_router, prefix="/organizations", tags=["organization-roles"])
app.include_router(audit_router, prefix="/organizations", tags=["audit"])
app.include_router(invitation_router, prefix="/invitations", tags=["invitations"])

# Subscription routes
app.include_router(subscription_router, prefix="/subscriptions", tags=["subscriptions"])

# Tenant data
app.include_router(crm_router, prefix="/crm", tags=["crm"])
app.include_router(finance_router, prefix="/finance", tags=["finance"])

# Platform admin routes
app.include_router(plan_router, prefix="/plans", tags=["plans"])
app.include_router(platform_rbac_router, prefix="/platform-rbac", tags=["platform-rbac"])
app.include_router(admin_organization_router, prefix="/admin/organizations", tags=["admin"])
app.include_router(admin_subscription_router, prefix="/admin/subscriptions", tags=["admin"])
app.include_router(admin_audit_router, prefix="/admin/audit-logs", tags=["admin"])
app.include_router(analytics_router, prefix="/admin/analytics", tags=["admin"])
