"""
This module implements the main API of the WMS ROI dashboard,
handling authentication, user management, companies and questionnaires.
"""

# =====================
# Imports and Global Setup
# =====================
import logging
import traceback
import uuid
from typing import Any, Dict

from fastapi import Body, Depends, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from auth import (
    TokenUser,
    create_access_token,
    ensure_company_access,
    forbid_non_admin,
    get_current_user,
    hash_password,
    identify,
    require_admin,
    verify_password,
)
from models.config_models import AppConfig, get_config
from models.main_models import (
    QUESTIONS,
    ROLES,
    CompanyRecord,
    CompanyRequest,
    LoginRequest,
    QuestionnaireSubmission,
    UserCreateRequest,
    UserDeleteRequest,
    UserUpdateRequest,
)
from retry import is_transient_error, save_with_retry
from storage import PostgresStore

# Load configuration and configure logging
config = get_config()
logging.basicConfig(level=config.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="WMS ROI Dashboard API")

# =====================
# Dependencies
# =====================

def get_store(request: Request) -> PostgresStore:
    """
    Returns the process-wide store, creating it on first use.
    """
    store = getattr(request.app.state, "store", None)
    if store is None:
        store = PostgresStore(get_config())
        request.app.state.store = store
    return store


def load_company(company_id: str, store: PostgresStore) -> CompanyRecord:
    """
    Fetches a company or raises 400 (malformed id) / 404 (unknown id).
    """
    try:
        uuid.UUID(company_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid company ID") from exc
    company = store.find_company(company_id)
    if company is None:
        raise HTTPException(status_code=404, detail="Company not found")
    return company

# =====================
# Error Handling
# =====================

PUBLIC_PATHS = frozenset({"/health", "/auth-login"})
ADMIN_PATHS = frozenset({"/users", "/clear-companies"})


def render_http_error(exc: StarletteHTTPException) -> JSONResponse:
    """
    Renders HTTP errors as `{"message": ...}` bodies.
    """
    if isinstance(exc.detail, dict):
        content = exc.detail
    else:
        content = {"message": exc.detail}
    return JSONResponse(status_code=exc.status_code, content=content,
                        headers=getattr(exc, "headers", None))


def auth_error_for(request: Request):
    """
    Returns the 401/403 a guarded route would raise for this request, if any.

    Routing (405) and body parsing (400) run before route dependencies, so
    their handlers check the caller first.
    """
    if request.url.path in PUBLIC_PATHS:
        return None
    try:
        user = identify(request.headers.get("authorization"), get_config())
        if request.url.path in ADMIN_PATHS:
            forbid_non_admin(user)
    except HTTPException as exc:
        return exc
    return None


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == status.HTTP_405_METHOD_NOT_ALLOWED:
        denied = auth_error_for(request)
        if denied is not None:
            return render_http_error(denied)
        exc = StarletteHTTPException(405, "Method not allowed", headers=exc.headers)
    return render_http_error(exc)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    denied = auth_error_for(request)
    if denied is not None:
        return render_http_error(denied)
    errors = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"message": "Invalid request body", "errors": errors},
    )


@app.middleware("http")
async def unhandled_errors(request: Request, call_next):
    """
    Turns uncaught exceptions into JSON 500s inside the CORS layer.
    """
    try:
        return await call_next(request)
    except Exception as exc:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        content = {"message": "Internal server error", "error": str(exc)}
        if get_config().expose_error_stack:
            content["stack"] = "".join(
                traceback.format_exception(type(exc), exc, exc.__traceback__)
            )
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=content)


# Added last so it wraps the error middleware above
if config.cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

# =====================
# Health and Authentication
# =====================

@app.get("/health")
def health():
    return {"status": "ok", "message": "Server is running"}


@app.post("/auth-login")
def login(
    credentials: LoginRequest,
    store: PostgresStore = Depends(get_store),
    settings: AppConfig = Depends(get_config),
):
    """
    Endpoint for obtaining a JWT token.
    """
    if not credentials.username or not credentials.password:
        raise HTTPException(status_code=400, detail="Username and password are required")

    logger.info("Login attempt for username: %s", credentials.username)
    user = store.find_user_by_username(credentials.username)
    if user is None or not verify_password(credentials.password, user.password_hash):
        logger.info("Login rejected for username: %s", credentials.username)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials.",
        )

    token = create_access_token(user, settings)
    return {"token": token, "user": {"username": user.username, "role": user.role}}


@app.post("/auth-logout")
def logout(current_user: TokenUser = Depends(get_current_user)):
    """
    Tokens are stateless; the client drops its copy.
    """
    logger.info("Logout for %s", current_user.username)
    return {"message": "Logout successful", "success": True}

# =====================
# User Management (admin only)
# =====================

@app.get("/users")
def list_users(
    current_user: TokenUser = Depends(require_admin),
    store: PostgresStore = Depends(get_store),
):
    return {"users": [user.public() for user in store.list_users()]}


@app.post("/users", status_code=status.HTTP_201_CREATED)
def create_user(
    payload: UserCreateRequest,
    current_user: TokenUser = Depends(require_admin),
    store: PostgresStore = Depends(get_store),
):
    """
    Creates a user with a hashed password.
    """
    if not payload.username or not payload.password or not payload.role:
        raise HTTPException(
            status_code=400,
            detail="Username, password and role are required"
        )
    if payload.role not in ROLES:
        raise HTTPException(status_code=400, detail="Role must be 'user' or 'admin'")
    if store.find_user_by_username(payload.username) is not None:
        raise HTTPException(status_code=409, detail="Username already exists")

    user = store.insert_user(payload.username, hash_password(payload.password), payload.role)
    logger.info("User %s created by %s", user.username, current_user.username)
    return {"message": "User created successfully", "user": user.public()}


@app.put("/users")
def update_user(
    payload: UserUpdateRequest,
    current_user: TokenUser = Depends(require_admin),
    store: PostgresStore = Depends(get_store),
):
    """
    Updates username, password and/or role of an existing user.
    """
    if not payload.userId or not (payload.username or payload.password or payload.role):
        raise HTTPException(
            status_code=400,
            detail="User ID and at least one field to update are required"
        )
    if payload.role and payload.role not in ROLES:
        raise HTTPException(status_code=400, detail="Role must be 'user' or 'admin'")

    user = store.find_user(payload.userId)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")

    fields: Dict[str, Any] = {}
    if payload.username and payload.username != user.username:
        if store.find_user_by_username(payload.username) is not None:
            raise HTTPException(status_code=409, detail="Username already exists")
        fields["username"] = payload.username
    if payload.password:
        fields["password_hash"] = hash_password(payload.password)
    if payload.role:
        fields["role"] = payload.role

    updated = store.update_user(user.id, fields)
    if updated is None:
        raise HTTPException(status_code=404, detail="User not found")
    return {"message": "User updated successfully", "user": updated.public()}


@app.delete("/users")
def delete_user(
    payload: UserDeleteRequest,
    current_user: TokenUser = Depends(require_admin),
    store: PostgresStore = Depends(get_store),
):
    if not payload.userId:
        raise HTTPException(status_code=400, detail="User ID is required")
    if payload.userId == current_user.user_id:
        raise HTTPException(status_code=400, detail="Cannot delete your own account")
    if not store.delete_user(payload.userId):
        raise HTTPException(status_code=404, detail="User not found")
    logger.info("User %s deleted by %s", payload.userId, current_user.username)
    return {"message": "User deleted successfully"}

# =====================
# Companies
# =====================

def _company_name(payload: CompanyRequest) -> str:
    name = payload.name
    if not isinstance(name, str) or not name.strip():
        raise HTTPException(status_code=400, detail="Company name is required")
    return name.strip()


@app.get("/companies")
def list_companies(
    current_user: TokenUser = Depends(get_current_user),
    store: PostgresStore = Depends(get_store),
):
    """
    Admins see every company; users only the ones they created.
    """
    owner = None if current_user.is_admin else current_user.username
    return [company.summary() for company in store.list_companies(created_by=owner)]


@app.post("/companies", status_code=status.HTTP_201_CREATED)
def create_company(
    payload: CompanyRequest,
    current_user: TokenUser = Depends(get_current_user),
    store: PostgresStore = Depends(get_store),
):
    company = store.insert_company(_company_name(payload), current_user.username, {})
    logger.info("Company %s created by %s", company.id, current_user.username)
    return company.summary()


@app.get("/companies/{company_id}")
def get_company(
    company_id: str,
    current_user: TokenUser = Depends(get_current_user),
    store: PostgresStore = Depends(get_store),
):
    company = load_company(company_id, store)
    ensure_company_access(company, current_user)
    return company.detail()


@app.put("/companies/{company_id}")
def rename_company(
    company_id: str,
    payload: CompanyRequest,
    current_user: TokenUser = Depends(get_current_user),
    store: PostgresStore = Depends(get_store),
):
    company = load_company(company_id, store)
    ensure_company_access(company, current_user)
    updated = store.rename_company(company.id, _company_name(payload))
    if updated is None:
        raise HTTPException(status_code=404, detail="Company not found")
    return updated.summary()


@app.delete("/companies/{company_id}")
def delete_company(
    company_id: str,
    current_user: TokenUser = Depends(get_current_user),
    store: PostgresStore = Depends(get_store),
):
    company = load_company(company_id, store)
    ensure_company_access(company, current_user)
    store.delete_company(company.id)
    return {"message": "Company deleted successfully", "companyId": company.id}


@app.get("/companies/{company_id}/data")
def get_company_data(
    company_id: str,
    current_user: TokenUser = Depends(get_current_user),
    store: PostgresStore = Depends(get_store),
):
    company = load_company(company_id, store)
    ensure_company_access(company, current_user)
    return company.data


@app.post("/companies/{company_id}/data")
def save_company_data(
    company_id: str,
    data: Any = Body(...),
    current_user: TokenUser = Depends(get_current_user),
    store: PostgresStore = Depends(get_store),
):
    """
    Replaces the company's uploaded dashboard data.
    """
    if not isinstance(data, dict):
        raise HTTPException(status_code=400, detail="Company data must be a JSON object")
    company = load_company(company_id, store)
    ensure_company_access(company, current_user)
    store.save_company_data(company.id, data)
    return {"message": "Data saved successfully"}


@app.post("/clear-companies")
def clear_companies(
    current_user: TokenUser = Depends(require_admin),
    store: PostgresStore = Depends(get_store),
):
    """
    Deletes every company (and the answers embedded on them).
    """
    deleted = store.delete_all_companies()
    logger.warning("All companies cleared by %s (%d deleted)", current_user.username, deleted)
    return {"message": "All companies cleared successfully", "deletedCount": deleted}

# =====================
# Questionnaire
# =====================

@app.get("/questionnaire/{company_id}")
def get_questionnaire(
    company_id: str,
    current_user: TokenUser = Depends(get_current_user),
    store: PostgresStore = Depends(get_store),
):
    company = load_company(company_id, store)
    ensure_company_access(company, current_user)
    return {
        "questions": [question.model_dump() for question in QUESTIONS],
        "answers": company.answers,
    }


@app.post("/questionnaire/{company_id}")
def save_questionnaire(
    company_id: str,
    submission: QuestionnaireSubmission,
    current_user: TokenUser = Depends(get_current_user),
    store: PostgresStore = Depends(get_store),
    settings: AppConfig = Depends(get_config),
):
    """
    Saves questionnaire answers, retrying transient write conflicts.
    """
    company = load_company(company_id, store)
    ensure_company_access(company, current_user)
    if not isinstance(submission.answers, dict):
        raise HTTPException(status_code=400, detail="Invalid answers format")

    answers = submission.answers
    try:
        saved = save_with_retry(
            lambda: store.save_questionnaire(company.id, answers),
            is_transient=is_transient_error,
            max_attempts=settings.save_max_attempts,
            base_delay=settings.retry_base_delay_ms / 1000.0,
        )
    except Exception as exc:
        logger.error("Failed to save questionnaire for company %s: %s", company.id, exc)
        raise HTTPException(
            status_code=500,
            detail={
                "message": "Failed to save questionnaire after multiple attempts",
                "error": str(exc),
            },
        ) from exc
    if not saved:
        raise HTTPException(status_code=404, detail="Company not found")
    return {"message": "Questionnaire answers saved successfully"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
