import os
from typing import Mapping, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import config
from .auth_routes import get_current_user, router as auth_router
from .errors import NotFound
from .fulfillment import router as fulfillment_router
from .logs import log_event
from .orders import router as orders_router
from .shopify import ShopifyClient
from .users_store import load_users


def _install_error_handlers(app: FastAPI) -> None:
    # Every failure leaves the API as {"error": ...}
    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code >= 500:
            log_event("app", event="request_failed", path=request.url.path, status=exc.status_code, error=exc.detail)
        return JSONResponse({"error": exc.detail}, status_code=exc.status_code, headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def _bad_request(request: Request, exc: RequestValidationError):
        return JSONResponse({"error": "Invalid request body"}, status_code=400)

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception):
        log_event("app", event="unhandled_error", path=request.url.path, error=repr(exc))
        return JSONResponse({"error": str(exc)}, status_code=500)


def create_app(
    users: Optional[Mapping[str, str]] = None,
    shopify: Optional[ShopifyClient] = None,
    static_dir: Optional[str] = None,
) -> FastAPI:
    """Build the relay app.

    `users` and `shopify` default to the credential file and the Shopify
    settings from the environment, resolved once at startup.
    """
    app = FastAPI(title="Order Delivery Relay", version="1.0.0")
    app.state.users = users
    app.state.shopify = shopify

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.allowed_origins(),
        allow_methods=["*"],
        allow_headers=["*"],
    )
    # Order pages carry up to 250 nested orders
    app.add_middleware(GZipMiddleware, minimum_size=500)
    _install_error_handlers(app)

    app.include_router(auth_router)
    app.include_router(orders_router)
    app.include_router(fulfillment_router)

    @app.api_route("/api/{rest:path}", methods=["GET", "POST", "PUT", "PATCH", "DELETE"], include_in_schema=False)
    async def _api_not_found(rest: str, user_id: str = Depends(get_current_user)):
        raise NotFound("Not Found")

    @app.get("/", include_in_schema=False)
    async def _root():
        return RedirectResponse("/login.html", status_code=302)

    @app.on_event("startup")
    async def _load_runtime_state():
        config.jwt_secret()
        if app.state.users is None:
            path = config.users_file()
            app.state.users = load_users(path)
            print(f"[AUTH] Loaded {len(app.state.users)} operator credentials from {path}")
        if app.state.shopify is None:
            app.state.shopify = ShopifyClient.from_env()
        if not app.state.shopify.domain or not app.state.shopify.access_token:
            print("[WARN] STORE_DOMAIN / ACCESS_TOKEN not set; Shopify calls will fail.")

    @app.on_event("startup")
    async def _log_routes():
        print("[ROUTES] Registered routes in order:")
        for r in app.router.routes:
            path = getattr(r, "path", "?")
            name = getattr(r, "name", "")
            print(f" - {r.__class__.__name__}: {path} ({name})")

    # Static mount goes last so it never shadows /api paths
    sdir = static_dir or config.static_dir()
    if os.path.isdir(sdir):
        app.mount("/", StaticFiles(directory=sdir, html=True), name="static")
    else:
        print(f"[WARN] Static directory not found at {sdir}.")
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=config.port())
