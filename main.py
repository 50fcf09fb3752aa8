#!/usr/bin/env python3

import time
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Callable, Optional
from urllib.parse import urlsplit

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from auth import AuthManager, AuthenticationError, Credentials, OAuthError
from config import Config
from content_client import ContentClient
from mcp_transport import MCPTransport
from models import HealthCheckResponse, LoginRequest, LoginResponse
from pages import render_health_page, render_home_page, render_login_page
from storage import KeyValueStore, StorageError, create_store
from tools import ContentTools

logger = logging.getLogger(__name__)

MISSING_PARAMS_ERROR = "필수 파라미터가 누락되었습니다 (client_id, redirect_uri, code_challenge)"
INVALID_CREDENTIALS_ERROR = "아이디 또는 패스워드가 올바르지 않습니다"
INVALID_REDIRECT_ERROR = "redirect_uri가 올바른 URL이 아닙니다"


def configure_logging(config: Config):
    logging.basicConfig(level=config.log_level.upper(), format=config.log_format)


def get_server_url(request: Request) -> str:
    """Origin of the incoming request, used for every advertised URL"""
    return f"{request.url.scheme}://{request.url.netloc}"


def _is_absolute_uri(uri: str) -> bool:
    parts = urlsplit(uri)
    return bool(parts.scheme) and bool(parts.netloc or parts.path)


def create_app(
    config: Optional[Config] = None,
    store: Optional[KeyValueStore] = None,
    content_client: Optional[ContentClient] = None,
    credentials: Optional[Credentials] = None,
    clock: Callable[[], float] = time.time,
) -> FastAPI:
    """Build the gateway application; collaborators may be injected for tests"""
    config = config if config is not None else Config()
    store = store if store is not None else create_store(config.redis_url)
    content_client = content_client if content_client is not None else ContentClient(config)
    credentials = credentials if credentials is not None else Credentials.from_config(config)

    auth_manager = AuthManager(config, store, credentials, clock=clock)
    mcp_transport = MCPTransport(config, ContentTools(content_client))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Starting {config.mcp_server_name} v{config.mcp_server_version}")
        logger.info(f"Environment: {config.environment}")
        logger.info(f"Content API: {config.content_api_url}")
        logger.info(f"Content API key configured: {'Yes' if config.content_api_key else 'No'}")
        yield
        logger.info(f"Shutting down {config.mcp_server_name}")
        await content_client.close()
        await store.close()

    app = FastAPI(
        title="Gamja MCP Server",
        description="MCP gateway for jcg-gamza educational content with OAuth 2.1 + PKCE",
        version=config.mcp_server_version,
        docs_url="/docs" if config.is_development else None,
        redoc_url="/redoc" if config.is_development else None,
        openapi_url="/openapi.json" if config.is_development else None,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.auth_manager = auth_manager
    app.state.mcp_transport = mcp_transport

    def cors_headers(request: Request) -> dict:
        headers = {
            "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
            "Access-Control-Allow-Headers": "Content-Type, Authorization, Mcp-Protocol-Version",
            "Access-Control-Expose-Headers": "WWW-Authenticate",
        }
        origin = request.headers.get("origin")
        if "*" in config.allowed_origins:
            headers["Access-Control-Allow-Origin"] = "*"
        elif origin in config.allowed_origins:
            headers["Access-Control-Allow-Origin"] = origin
            headers["Vary"] = "Origin"
        return headers

    # CORS on every response; OPTIONS on any path is answered here
    @app.middleware("http")
    async def add_cors_and_security_headers(request: Request, call_next):
        if request.method == "OPTIONS":
            return Response(status_code=204, headers=cors_headers(request))

        response = await call_next(request)
        response.headers.update(cors_headers(request))

        # Security headers
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        if config.is_production:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        return response

    @app.exception_handler(OAuthError)
    async def oauth_error_handler(request: Request, exc: OAuthError):
        logger.info(f"OAuth error on {request.url.path}: {exc.error} ({exc.description})")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError):
        logger.error(f"Storage failure on {request.url.path}: {exc}")
        return JSONResponse(
            status_code=503,
            content={"error": "temporarily_unavailable", "error_description": "Storage backend unavailable"},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return JSONResponse(status_code=404, content={"error": "Not found"})
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    # Informational pages
    @app.get("/", response_class=HTMLResponse)
    async def root(request: Request):
        """Home page with endpoints and available tools"""
        return HTMLResponse(
            render_home_page(get_server_url(request), mcp_transport.tools, config.mcp_server_version)
        )

    @app.get("/health")
    async def health_check(request: Request):
        """Health page; JSON when the client asks for it"""
        if "application/json" in request.headers.get("accept", ""):
            health = HealthCheckResponse(
                status="healthy",
                service=config.mcp_server_name,
                version=config.mcp_server_version,
                timestamp=datetime.now(timezone.utc).isoformat(),
                components={
                    "content_api": "configured" if config.content_api_key else "not_configured",
                    "auth": "ready",
                    "store": "redis" if config.redis_url else "memory",
                    "mcp_transport": "ready",
                },
                environment=config.environment,
            )
            return health.model_dump()

        return HTMLResponse(
            render_health_page(config.mcp_server_version, config.mcp_protocol_version, len(mcp_transport.tools))
        )

    # OAuth 2.0 Protected Resource Metadata (RFC 9728)
    @app.get("/.well-known/oauth-protected-resource")
    async def oauth_protected_resource_metadata(request: Request):
        server_url = get_server_url(request)
        return {
            "resource": server_url,
            "authorization_servers": [server_url],
            "bearer_methods_supported": ["header"],
            "scopes_supported": config.oauth_scopes,
            "resource_documentation": f"{server_url}/docs",
        }

    # OAuth 2.1 Authorization Server Metadata (RFC 8414)
    @app.get("/.well-known/oauth-authorization-server")
    async def oauth_authorization_server_metadata(request: Request):
        server_url = get_server_url(request)
        return {
            "issuer": server_url,
            "authorization_endpoint": f"{server_url}/oauth/authorize",
            "token_endpoint": f"{server_url}/oauth/token",
            "registration_endpoint": f"{server_url}/oauth/register",
            "response_types_supported": ["code"],
            "grant_types_supported": ["authorization_code"],
            "code_challenge_methods_supported": ["S256"],
            "scopes_supported": config.oauth_scopes,
        }

    # Dynamic Client Registration (RFC 7591)
    @app.post("/oauth/register")
    async def dynamic_client_registration(request: Request):
        try:
            client_metadata = await request.json()
        except ValueError:
            raise OAuthError("invalid_client_metadata", "Invalid request body")

        client = await auth_manager.register_client(client_metadata)
        return JSONResponse(status_code=201, content=client.model_dump(exclude_none=True))

    def login_page(params: dict, error: Optional[str] = None, status_code: int = 200) -> HTMLResponse:
        return HTMLResponse(
            render_login_page(
                params["client_id"],
                params["redirect_uri"],
                params["state"],
                params["scope"],
                params["code_challenge"],
                params["code_challenge_method"],
                error,
            ),
            status_code=status_code,
        )

    def authorize_params(source) -> dict:
        def value(name: str) -> str:
            raw = source.get(name)
            return raw if isinstance(raw, str) else ""

        return {
            "client_id": value("client_id"),
            "redirect_uri": value("redirect_uri"),
            "state": value("state"),
            "scope": value("scope") or config.oauth_default_scope,
            "code_challenge": value("code_challenge"),
            "code_challenge_method": value("code_challenge_method") or "S256",
        }

    def missing_required(params: dict) -> bool:
        return not (params["client_id"] and params["redirect_uri"] and params["code_challenge"])

    # OAuth Authorization endpoint: login form
    @app.get("/oauth/authorize", response_class=HTMLResponse)
    async def oauth_authorize(request: Request):
        params = authorize_params(request.query_params)
        if missing_required(params):
            return login_page(params, MISSING_PARAMS_ERROR, status_code=400)
        return login_page(params)

    # OAuth Authorization endpoint: login submission
    @app.post("/oauth/authorize")
    async def oauth_authorize_submit(request: Request):
        form = await request.form()
        params = authorize_params(form)

        if missing_required(params):
            return login_page(params, MISSING_PARAMS_ERROR, status_code=400)

        username = form.get("username")
        password = form.get("password")
        if not auth_manager.check_login(
            username if isinstance(username, str) else None,
            password if isinstance(password, str) else None,
        ):
            logger.warning(f"Failed login for client {params['client_id']}")
            return login_page(params, INVALID_CREDENTIALS_ERROR, status_code=401)

        if not _is_absolute_uri(params["redirect_uri"]):
            return login_page(params, INVALID_REDIRECT_ERROR, status_code=400)

        _, redirect_url = await auth_manager.create_authorization_code(
            client_id=params["client_id"],
            redirect_uri=params["redirect_uri"],
            code_challenge=params["code_challenge"],
            code_challenge_method=params["code_challenge_method"],
            scope=params["scope"],
            state=params["state"] or None,
        )
        return RedirectResponse(url=redirect_url, status_code=302)

    # OAuth Token endpoint
    @app.post("/oauth/token")
    async def oauth_token(request: Request):
        content_type = request.headers.get("content-type", "")
        if "application/json" in content_type:
            try:
                form_data = await request.json()
            except ValueError:
                raise OAuthError("invalid_request", "Invalid JSON body")
            if not isinstance(form_data, dict):
                raise OAuthError("invalid_request", "Request body must be a JSON object")
        else:
            form = await request.form()
            form_data = {key: value for key, value in form.items() if isinstance(value, str)}

        token_response = await auth_manager.exchange_code_for_token(form_data)
        return JSONResponse(
            content=token_response.model_dump(),
            headers={"Cache-Control": "no-store", "Pragma": "no-cache"},
        )

    # Legacy login: returns the static bearer token
    @app.post("/auth/login")
    async def legacy_login(request: Request):
        try:
            login = LoginRequest.model_validate(await request.json())
        except ValueError as e:
            # Covers both malformed JSON and a body that is not an object
            return JSONResponse(
                status_code=400,
                content=LoginResponse(success=False, error=f"Invalid JSON body: {e}").model_dump(exclude_none=True),
            )

        if not login.username or not login.password:
            return JSONResponse(
                status_code=400,
                content=LoginResponse(success=False, error="Username and password are required").model_dump(exclude_none=True),
            )

        if auth_manager.check_login(login.username, login.password):
            return LoginResponse(success=True, token=auth_manager.credentials.legacy_token).model_dump(exclude_none=True)

        return JSONResponse(
            status_code=401,
            content=LoginResponse(success=False, error="Invalid credentials").model_dump(exclude_none=True),
        )

    # MCP HTTP endpoint (protected)
    @app.api_route("/mcp", methods=["GET", "POST", "PUT", "PATCH", "DELETE"])
    async def mcp_endpoint(request: Request):
        try:
            await auth_manager.validate_bearer(request.headers.get("Authorization"))
        except AuthenticationError as e:
            logger.debug(f"Rejected /mcp request: {e.message}")
            resource_metadata_url = f"{get_server_url(request)}/.well-known/oauth-protected-resource"
            return JSONResponse(
                status_code=401,
                content={"error": e.message},
                headers={"WWW-Authenticate": f'Bearer resource_metadata="{resource_metadata_url}"'},
            )

        if request.method != "POST":
            return JSONResponse(
                status_code=405,
                content={"error": "Method not allowed. Use POST for MCP requests."},
                headers={"Allow": "POST"},
            )

        return await mcp_transport.handle_post_request(request)

    return app


config = Config()
configure_logging(config)
app = create_app(config)

if __name__ == "__main__":
    print(f"🚀 Starting {config.mcp_server_name} v{config.mcp_server_version}")
    print(f"📊 Environment: {config.environment}")
    print(f"🔑 Content API key configured: {'Yes' if config.content_api_key else 'No'}")
    print(f"🗄️  Store: {'Redis' if config.redis_url else 'in-memory'}")
    print(f"🔧 OAuth 2.1 + PKCE with Dynamic Client Registration enabled")

    uvicorn.run(
        "main:app",
        host=config.host,
        port=config.port,
        reload=config.is_development,
        log_level=config.log_level.lower(),
        access_log=True
    )
