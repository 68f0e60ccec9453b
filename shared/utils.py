from datetime import datetime, timedelta, timezone
from typing import Optional, Generic, TypeVar, Any
from fastapi import HTTPException, status, Header
from motor.motor_asyncio import AsyncIOMotorClient
from pydantic import BaseModel
from pydantic_settings import BaseSettings
from jose import JWTError, jwt
import uuid

# --- Configuration ---
class Settings(BaseSettings):
    MONGO_URL: str = "mongodb://mongodb:27017"
    MONGO_TIMEOUT_MS: int = 5000
    CARTS_DB_NAME: str = "carts_db"
    CART_STORE: str = "mongo"  # mongo | memory
    PRODUCTS_SERVICE_URL: str = "http://products-service:8002"
    PRODUCTS_TIMEOUT_SECONDS: float = 5.0
    SECRET_KEY: str = "secret"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    ADMIN_ROLE: str = "admin"
    LOG_LEVEL: str = "INFO"
    RATE_LIMIT: str = "60/minute"

    class Config:
        env_file = ".env"

settings = Settings()

# --- Database ---
def get_db_client(url: str = settings.MONGO_URL) -> AsyncIOMotorClient:
    return AsyncIOMotorClient(url, serverSelectionTimeoutMS=settings.MONGO_TIMEOUT_MS)

# --- Authentication ---
def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Sign a token the way the auth service does. Used by tests and local tooling."""
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    if "jti" not in to_encode:
        to_encode.update({"jti": str(uuid.uuid4())})

    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

def verify_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        # covers expired signatures too
        raise UnauthorizedException("Could not validate credentials")
    if not payload.get("sub"):
        raise UnauthorizedException("Token has no subject")
    return payload

# --- Response Models ---
T = TypeVar("T")

class SuccessResponse(BaseModel, Generic[T]):
    success: bool = True
    data: Optional[T] = None
    message: Optional[str] = None

class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    details: Optional[Any] = None

class HealthResponse(BaseModel):
    service: str
    status: str
    timestamp: datetime
    version: str
    database: Optional[str] = None
    dependencies: Optional[dict] = None


# --- Exceptions ---
class AppException(HTTPException):
    def __init__(
        self,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        detail: str = "An error occurred",
        headers: Optional[dict] = None
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)

class UnauthorizedException(AppException):
    def __init__(self, detail: str = "Unauthorized"):
         super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"}
        )

class ForbiddenException(AppException):
    def __init__(self, detail: str = "Forbidden"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)

# --- Decorators/Dependencies ---
async def require_auth(authorization: Optional[str] = Header(None)) -> dict:
    if not authorization:
        raise UnauthorizedException(detail="Missing Authorization header")
    scheme, _, param = authorization.partition(" ")
    if scheme.lower() != "bearer" or not param:
         raise UnauthorizedException(detail="Invalid authentication credentials")
    return verify_token(param)
