"""Authentication and account-security modules."""

from auth.exceptions import (
    AuthError,
    AccountLockedError,
    ConflictError,
    EmailTakenError,
    InvalidCredentialsError,
    RateLimitedError,
    UserNotFoundError,
    UsernameTakenError,
)
from auth.types import (
    Role,
    User,
    OtpChallenge,
    TokenClaims,
    RegisterRequest,
    LoginRequest,
    VerifyOtpRequest,
    AuthResponse,
)
from auth.config import AuthConfig
from auth.database import UserDatabase, OtpDatabase
from auth.rate_limiter import RateLimiter
from auth.otp_generator import generate_code
from auth.security_logger import SecurityLogger, SecurityEvent, AuditEvent
from auth.lockout import AccountLockPolicy, LockState, LockStatus
from auth.notifications import EmailDispatcher
from auth.otp import OtpService, OtpAttemptLimiter
from auth.passwords import PasswordHasher
from auth.tokens import TokenIssuer
from auth.service import AuthService
from auth.security_middleware import RateLimitMiddleware
from auth.client_ip import ClientIpResolver
from auth.api import create_auth_router
