import logging
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, RedirectResponse
from starlette.middleware.sessions import SessionMiddleware

from auth import (
    DEV_EMAIL,
    AdmissionError,
    OAuthProfile,
    admit_oauth_profile,
    build_oauth,
    can_rider_update,
    can_view_order,
    current_user,
    dev_login_user,
    login,
    logout,
    optional_user,
    require_role,
)
from config import Settings, load_settings
from database import connect_storage, get_storage
from schemas import AdminStatusUpdate, Order, OrderPlacement, RiderStatusUpdate
from storage import Storage

logger = logging.getLogger(__name__)

SESSION_MAX_AGE = 24 * 60 * 60
LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s %(message)s"

router = APIRouter(prefix="/api")
google_router = APIRouter(prefix="/api/auth/google")


# ----------------------- Health -----------------------
@router.get("/test")
def api_test(storage: Storage = Depends(get_storage)):
    return {"message": "API is working!", "storage": storage.name}


# ----------------------- Auth -----------------------
@google_router.get("")
async def google_login(request: Request):
    redirect_uri = request.url_for("google_callback")
    return await request.app.state.oauth.google.authorize_redirect(request, str(redirect_uri))


@google_router.get("/callback", name="google_callback")
async def google_callback(request: Request, storage: Storage = Depends(get_storage)):
    try:
        token = await request.app.state.oauth.google.authorize_access_token(request)
        userinfo = token.get("userinfo")
        if not userinfo:
            raise AdmissionError("No profile returned by Google")
        user = admit_oauth_profile(storage, OAuthProfile.from_userinfo(userinfo))
    except (OAuthError, AdmissionError) as e:
        logger.warning("Google login failed: %s", e)
        return RedirectResponse(url="/login?error=google-auth-failed", status_code=status.HTTP_302_FOUND)
    login(request, user)
    return RedirectResponse(url="/", status_code=status.HTTP_302_FOUND)


@router.get("/auth/dev-login")
def dev_login(request: Request, storage: Storage = Depends(get_storage)):
    user = dev_login_user(storage)
    login(request, user)
    return RedirectResponse(url="/", status_code=status.HTTP_302_FOUND)


@router.get("/auth/user")
def auth_user(user: Optional[dict] = Depends(optional_user)):
    if user is None:
        return JSONResponse(status_code=status.HTTP_401_UNAUTHORIZED, content={"authenticated": False})
    return {"authenticated": True, "user": user}


@router.post("/auth/logout")
def auth_logout(request: Request):
    logout(request)
    return {"message": "Logged out successfully"}


# ----------------------- Products -----------------------
@router.get("/products")
def list_products(storage: Storage = Depends(get_storage)):
    return storage.get_products()


@router.get("/products/category/{category}")
def list_products_by_category(category: str, storage: Storage = Depends(get_storage)):
    return storage.get_products_by_category(category)


@router.get("/products/{product_id}")
def get_product(product_id: str, storage: Storage = Depends(get_storage)):
    product = storage.get_product(product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


# ----------------------- Orders -----------------------
@router.post("/orders", status_code=status.HTTP_201_CREATED)
def create_order(payload: OrderPlacement, user: dict = Depends(current_user), storage: Storage = Depends(get_storage)):
    # Orders are created already paid
    order = Order(**payload.order.model_dump(), user_id=user["id"], status="paid")
    created = storage.create_order(order, payload.items)
    logger.info("Order %s placed by %s with %d item(s)", created["id"], user["id"], len(payload.items))
    return created


@router.get("/orders")
def list_orders(user: dict = Depends(current_user), storage: Storage = Depends(get_storage)):
    if user["role"] == "admin":
        return storage.get_all_orders()
    if user["role"] == "rider":
        return storage.get_rider_orders(user["id"])
    return storage.get_user_orders(user["id"])


@router.get("/orders/{order_id}")
def order_detail(order_id: str, user: dict = Depends(current_user), storage: Storage = Depends(get_storage)):
    order_with_items = storage.get_order_with_items(order_id)
    if not order_with_items:
        raise HTTPException(status_code=404, detail="Order not found")
    if not can_view_order(user, order_with_items["order"]):
        raise HTTPException(status_code=403, detail="Forbidden")
    return order_with_items


# ----------------------- Admin -----------------------
@router.patch("/admin/orders/{order_id}/status")
def admin_update_order_status(
    order_id: str,
    body: AdminStatusUpdate,
    user: dict = Depends(require_role("admin")),
    storage: Storage = Depends(get_storage),
):
    updated = storage.update_order_status(order_id, body.status, body.rider_id)
    if not updated:
        raise HTTPException(status_code=404, detail="Order not found")
    logger.info("Admin %s set order %s to %s", user["id"], order_id, body.status)
    return updated


# ----------------------- Rider -----------------------
@router.patch("/rider/orders/{order_id}/status")
def rider_update_order_status(
    order_id: str,
    body: RiderStatusUpdate,
    user: dict = Depends(require_role("rider")),
    storage: Storage = Depends(get_storage),
):
    order = storage.get_order(order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    if not can_rider_update(user, order):
        raise HTTPException(status_code=403, detail="You are not assigned to this order")
    logger.info("Rider %s set order %s to %s", user["id"], order_id, body.status)
    return storage.update_order_status(order_id, body.status)


# ----------------------- Errors -----------------------
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [{"loc": list(e["loc"]), "msg": e["msg"], "type": e["type"]} for e in exc.errors()]
    return JSONResponse(status_code=400, content={"detail": "Invalid request data", "errors": errors})


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error("Error: %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
    settings: Settings = request.app.state.settings
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal Server Error",
            "message": str(exc) if settings.is_development else "Something went wrong",
        },
    )


async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    if request.url.path.startswith("/api"):
        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info("%s %s %s in %.0fms", request.method, request.url.path, response.status_code, elapsed_ms)
    return response


# ----------------------- Frontend -----------------------
def mount_frontend(app: FastAPI, settings: Settings):
    if settings.is_development:
        logger.info("Development mode: the frontend is served by its own dev server")
        return
    static_dir = Path(settings.static_dir).resolve()
    index = static_dir / "index.html"
    if not index.is_file():
        logger.warning("Production mode: %s not found, frontend will not be served", index)
        return
    logger.info("Production mode: serving static files from %s", static_dir)

    @app.get("/{full_path:path}", include_in_schema=False)
    def frontend(full_path: str):
        if full_path == "api" or full_path.startswith("api/"):
            raise HTTPException(status_code=404, detail="Not Found")
        candidate = (static_dir / full_path).resolve()
        if candidate.is_file() and candidate.is_relative_to(static_dir):
            return FileResponse(candidate)
        # Client-side routes all load the SPA shell
        return FileResponse(index)


# ----------------------- App -----------------------
def create_app(settings: Optional[Settings] = None, storage: Optional[Storage] = None) -> FastAPI:
    """Build the application.

    When ``storage`` is not given, MongoDB is probed on startup and the
    in-memory store is used if it cannot be reached.
    """
    settings = settings or load_settings()
    logging.basicConfig(level=settings.log_level, format=LOG_FORMAT)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.storage is None:
            app.state.storage = connect_storage(settings)
        logger.info("Using %s storage", app.state.storage.name)
        app.state.storage.ensure_approved_email(DEV_EMAIL, "admin")
        yield

    app = FastAPI(title="Fan & AC Store API", version="1.0.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.storage = storage
    app.state.oauth = build_oauth(settings)

    app.middleware("http")(log_requests)
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.session_secret,
        max_age=SESSION_MAX_AGE,
        https_only=not settings.is_development,
    )
    if settings.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(settings.cors_origins),
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    if app.state.oauth is not None:
        app.include_router(google_router)
    app.include_router(router)
    mount_frontend(app, settings)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=app.state.settings.port)
