import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from pathlib import Path

from fastapi import Cookie, Depends, FastAPI, File, Request, Response, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import FileResponse, JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from starlette.exceptions import HTTPException

from filestore.accounts import AccountService
from filestore.authorization import OwnershipAuthorizer
from filestore.config import Settings, get_settings
from filestore.errors import (
    Conflict,
    Expired,
    FileStoreError,
    Forbidden,
    InvalidInput,
    NotFound,
    PayloadTooLarge,
    SecurityViolation,
    StorageIOFailure,
    Unauthenticated,
)
from filestore.log import configure_logging
from filestore.models import (
    ChangePasswordRequest,
    FileListResponse,
    FileRecord,
    LoginRequest,
    MessageResponse,
    RegisterRequest,
    TokenResponse,
    UsageResponse,
    User,
)
from filestore.repository import FileRepository, RefreshTokenRepository, UserRepository
from filestore.security import AccessTokenService
from filestore.sessions import SessionCredentialManager
from filestore.storage import LocalOwnerStorage

logger = logging.getLogger(__name__)

REFRESH_COOKIE = "refresh_token"
NOSNIFF_HEADERS = {"X-Content-Type-Options": "nosniff"}
GENERIC_ERROR_MESSAGE = "an unexpected error occurred"

ERROR_STATUS: dict[type[FileStoreError], int] = {
    InvalidInput: 400,
    SecurityViolation: 400,
    Unauthenticated: 401,
    Expired: 401,
    Forbidden: 403,
    NotFound: 404,
    Conflict: 409,
    PayloadTooLarge: 413,
    StorageIOFailure: 500,
}


def status_for(exc: FileStoreError) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return 500


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    file_repository = FileRepository(settings.database_path)
    token_repository = RefreshTokenRepository(settings.database_path)
    user_repository = UserRepository(settings.database_path)

    storage = LocalOwnerStorage(
        settings.storage_dir,
        file_repository,
        max_size_bytes=settings.max_upload_size_bytes,
    )
    authorizer = OwnershipAuthorizer()
    sessions = SessionCredentialManager(
        token_repository,
        lifetime=timedelta(days=settings.refresh_token_ttl_days),
    )
    tokens = AccessTokenService(
        settings.secret_key,
        timedelta(minutes=settings.access_token_ttl_minutes),
    )
    accounts = AccountService(
        user_repository,
        storage,
        sessions,
        username_min_length=settings.username_min_length,
        username_max_length=settings.username_max_length,
        password_min_length=settings.password_min_length,
        bcrypt_rounds=settings.bcrypt_rounds,
    )

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        Path(settings.database_path).parent.mkdir(parents=True, exist_ok=True)
        file_repository.init()
        token_repository.init()
        user_repository.init()
        storage.init()
        yield

    app = FastAPI(title=settings.app_name, lifespan=lifespan)

    def error_response(status_code: int, message: str, code: str) -> JSONResponse:
        return JSONResponse(
            status_code=status_code,
            content={"error": {"code": code, "message": message}},
        )

    @app.exception_handler(FileStoreError)
    async def filestore_exception_handler(request: Request, exc: FileStoreError):
        status_code = status_for(exc)
        if status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed", exc_info=exc)
            return error_response(status_code, StorageIOFailure.message, exc.code)
        return error_response(status_code, exc.message, exc.code)

    @app.exception_handler(RequestValidationError)
    async def request_validation_exception_handler(_: Request, exc: RequestValidationError):
        missing_fields = [
            ".".join(str(item) for item in error["loc"] if item != "body")
            for error in exc.errors()
            if error.get("type") == "missing"
        ]
        if missing_fields:
            message = f"missing parameters: {', '.join(missing_fields)}"
        else:
            message = "invalid request parameters"
        return error_response(400, message, "bad_request")

    @app.exception_handler(HTTPException)
    async def http_exception_handler(_: Request, exc: HTTPException):
        message = str(exc.detail) if exc.detail else "request failed"
        code_map = {
            400: "bad_request",
            401: "unauthorized",
            403: "forbidden",
            404: "not_found",
            405: "method_not_allowed",
            413: "payload_too_large",
        }
        return error_response(exc.status_code, message, code_map.get(exc.status_code, "error"))

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.method} {request.url.path}", exc_info=exc)
        return error_response(500, GENERIC_ERROR_MESSAGE, "internal_error")

    bearer = HTTPBearer(auto_error=False)

    def current_user(credentials: HTTPAuthorizationCredentials | None = Depends(bearer)) -> User:
        if credentials is None:
            raise Unauthenticated()
        user = user_repository.get_by_username(tokens.decode_subject(credentials.credentials))
        if user is None:
            raise Unauthenticated()
        return user

    def optional_user(credentials: HTTPAuthorizationCredentials | None = Depends(bearer)) -> User | None:
        if credentials is None:
            return None
        try:
            return current_user(credentials)
        except Unauthenticated:
            return None

    def set_refresh_cookie(response: Response, token: str) -> None:
        response.set_cookie(
            key=REFRESH_COOKIE,
            value=token,
            max_age=int(sessions.lifetime.total_seconds()),
            path="/",
            httponly=True,
            secure=settings.refresh_cookie_secure,
            samesite=settings.refresh_cookie_samesite,
        )

    def clear_refresh_cookie(response: Response) -> None:
        response.delete_cookie(
            key=REFRESH_COOKIE,
            path="/",
            httponly=True,
            secure=settings.refresh_cookie_secure,
            samesite=settings.refresh_cookie_samesite,
        )

    def owned_file_on_disk(file_id: str, user: User) -> tuple[FileRecord, Path]:
        record = authorizer.require_owner(storage.get_file(file_id), user)
        path = storage.get_file_path(record.filename, record.owner_id)
        if not path.is_file():
            raise NotFound("file content missing")
        return record, path

    @app.get("/")
    def root() -> dict:
        return {"status": "ok", "service": settings.app_name}

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok", "environment": settings.app_env}

    @app.post("/v1/auth/register", response_model=MessageResponse, status_code=201)
    def register(payload: RegisterRequest):
        accounts.register(payload.username, payload.password)
        return MessageResponse(message="user registered successfully")

    @app.post("/v1/auth/login", response_model=TokenResponse)
    def login(payload: LoginRequest, response: Response):
        user = accounts.authenticate(payload.username, payload.password)
        credential = sessions.create_refresh_credential(user.username)
        set_refresh_cookie(response, credential.token)
        logger.info(f"User {user.username} logged in")
        return TokenResponse(
            access_token=tokens.issue_access_token(user.username),
            username=user.username,
            message="login successful",
        )

    @app.post("/v1/auth/refresh", response_model=TokenResponse)
    def refresh(response: Response, refresh_token: str | None = Cookie(default=None)):
        if not refresh_token:
            raise Unauthenticated("refresh token missing")
        try:
            credential = sessions.validate(refresh_token)
        except NotFound as exc:
            raise Unauthenticated("refresh token not found") from exc
        if settings.rotate_refresh_tokens:
            credential = sessions.rotate(credential)
            set_refresh_cookie(response, credential.token)
        return TokenResponse(
            access_token=tokens.issue_access_token(credential.username),
            username=credential.username,
            message="token refreshed successfully",
        )

    @app.post("/v1/auth/logout", response_model=MessageResponse)
    def logout(
        response: Response,
        user: User | None = Depends(optional_user),
        refresh_token: str | None = Cookie(default=None),
    ):
        username = user.username if user is not None else None
        if username is None and refresh_token:
            credential = sessions.find_by_token(refresh_token)
            if credential is not None:
                username = credential.username
        if username is not None:
            sessions.delete_by_username(username)
            logger.info(f"User {username} logged out")
        clear_refresh_cookie(response)
        return MessageResponse(message="logout successful")

    @app.post("/v1/auth/change-password", response_model=MessageResponse)
    def change_password(payload: ChangePasswordRequest, user: User = Depends(current_user)):
        accounts.change_password(user, payload.current_password, payload.new_password)
        return MessageResponse(message="password changed successfully")

    @app.delete("/v1/auth/account", response_model=MessageResponse)
    def delete_account(response: Response, user: User = Depends(current_user)):
        failures = accounts.delete_account(user)
        if failures:
            logger.warning(f"Account {user.username} deleted with {len(failures)} leftover filesystem entries")
        clear_refresh_cookie(response)
        return MessageResponse(message="account deleted successfully")

    @app.get("/v1/files", response_model=FileListResponse)
    def list_files(user: User = Depends(current_user)):
        return FileListResponse(files=storage.list_files(user.user_id))

    @app.post("/v1/files", response_model=FileRecord, status_code=201)
    def upload_file(file: UploadFile = File(...), user: User = Depends(current_user)):
        return storage.store_file(file.filename, file.file, file.content_type, user.user_id)

    @app.get("/v1/files/usage", response_model=UsageResponse)
    def storage_usage(user: User = Depends(current_user)):
        return UsageResponse(usage=storage.total_usage(user.user_id))

    @app.get("/v1/files/{file_id}/download")
    def download_file(file_id: str, user: User = Depends(current_user)):
        record, path = owned_file_on_disk(file_id, user)
        return FileResponse(
            path=path,
            filename=record.filename,
            media_type=record.content_type,
            headers=NOSNIFF_HEADERS,
        )

    @app.get("/v1/files/{file_id}/view")
    def view_file(file_id: str, user: User = Depends(current_user)):
        record, path = owned_file_on_disk(file_id, user)
        return FileResponse(
            path=path,
            filename=record.filename,
            media_type=record.content_type,
            content_disposition_type="inline",
            headers=NOSNIFF_HEADERS,
        )

    @app.delete("/v1/files/{file_id}", response_model=MessageResponse)
    def delete_file(file_id: str, user: User = Depends(current_user)):
        authorizer.require_owner(storage.get_file(file_id), user)
        storage.delete_file(file_id)
        return MessageResponse(message="file deleted successfully")

    return app


app = create_app()
