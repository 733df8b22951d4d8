"""Authentication service - orchestrates register, password login and OTP verification."""

from datetime import datetime
from uuid import uuid4

from auth.config import AuthConfig
from auth.database import UserDatabase
from auth.exceptions import (
    AccountLockedError,
    EmailTakenError,
    InvalidCredentialsError,
    UserNotFoundError,
    UsernameTakenError,
)
from auth.lockout import AccountLockPolicy
from auth.notifications import EmailDispatcher
from auth.otp import OtpService
from auth.passwords import PasswordHasher
from auth.security_logger import SecurityEvent, SecurityLogger
from auth.tokens import TokenIssuer
from auth.types import (
    AuthResponse,
    LoginRequest,
    RegisterRequest,
    Role,
    TokenClaims,
    User,
    VerifyOtpRequest,
)
from utils.timezone import now_utc


class AuthService:
    """Orchestrates the login protocol.

    Handles:
    - Registration (token issued immediately, no MFA)
    - Password step (lockout check, failure counting, passcode issue)
    - Passcode step (single-use verification, token issue)

    Every step is audited. State changes made before a failure (a counted
    failed attempt, a burned passcode) are committed even though the call
    raises.
    """

    def __init__(
        self,
        config: AuthConfig,
        user_db: UserDatabase,
        lock_policy: AccountLockPolicy,
        otp_service: OtpService,
        password_hasher: PasswordHasher,
        token_issuer: TokenIssuer,
        dispatcher: EmailDispatcher,
        security_logger: SecurityLogger,
    ):
        self._config = config
        self._user_db = user_db
        self._lock_policy = lock_policy
        self._otp_service = otp_service
        self._password_hasher = password_hasher
        self._token_issuer = token_issuer
        self._dispatcher = dispatcher
        self._security_logger = security_logger

    def _issue_token(self, user: User) -> str:
        claims = TokenClaims(user_id=user.id, email=user.email, role=user.role)
        return self._token_issuer.issue(user.username, claims)

    def register(
        self,
        request: RegisterRequest,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuthResponse:
        """Create a VIEWER account and sign the user in.

        Raises:
            UsernameTakenError: If the username exists.
            EmailTakenError: If the email exists.
        """
        if self._user_db.exists_by_username(request.username):
            raise UsernameTakenError()

        if self._user_db.exists_by_email(request.email):
            raise EmailTakenError()

        user = self._user_db.save(
            User(
                id=uuid4(),
                fullname=request.fullname,
                username=request.username,
                email=request.email.lower(),
                password_hash=self._password_hasher.hash(request.password),
                role=Role.VIEWER,
                failed_attempts=0,
                locked=False,
                created_at=now_utc(),
            )
        )

        # Best effort; a gateway failure is logged by the dispatcher
        self._dispatcher.send_welcome(user.email, user.username)

        self._security_logger.log(
            SecurityEvent.USER_REGISTER,
            user_id=user.id,
            username=user.username,
            success=True,
            detail="User registered successfully",
            ip_address=ip_address,
            user_agent=user_agent,
        )

        return AuthResponse(
            token=self._issue_token(user),
            mfa_required=False,
            user_id=user.id,
            username=user.username,
            email=user.email,
            role=user.role,
        )

    def login(
        self,
        request: LoginRequest,
        ip_address: str | None = None,
        user_agent: str | None = None,
        now: datetime | None = None,
    ) -> AuthResponse:
        """Check the password and, if it is right, email a passcode.

        Flow:
        1. Resolve user by username or email
        2. Reopen an expired lock, then refuse if still locked
        3. Verify password; count a failure on mismatch
        4. Clear failures, issue passcode

        No token is issued here.

        Raises:
            UserNotFoundError: If no user matches.
            AccountLockedError: If the account is locked (password not checked).
            InvalidCredentialsError: If the password is wrong.
        """
        now = now or now_utc()

        user = self._user_db.find_by_username_or_email(request.username_or_email)
        if user is None:
            self._security_logger.log(
                SecurityEvent.LOGIN_FAILED,
                username=request.username_or_email,
                success=False,
                detail="User not found",
                ip_address=ip_address,
                user_agent=user_agent,
            )
            raise UserNotFoundError("User not found")

        user = self._lock_policy.refresh(user, now)
        status = self._lock_policy.lock_status(user, now)
        if status.is_locked:
            until = status.locked_until.isoformat() if status.locked_until else "further notice"
            self._security_logger.log(
                SecurityEvent.LOGIN_FAILED,
                user_id=user.id,
                username=user.username,
                success=False,
                detail=f"Login failed - Account locked until {until}",
                ip_address=ip_address,
                user_agent=user_agent,
            )
            raise AccountLockedError(status.locked_until)

        if not self._password_hasher.verify(request.password, user.password_hash):
            user = self._lock_policy.record_failure(user, now)
            self._security_logger.log(
                SecurityEvent.LOGIN_FAILED,
                user_id=user.id,
                username=user.username,
                success=False,
                detail=(
                    "Login failed - Invalid credentials. "
                    f"Attempt {user.failed_attempts}/{self._config.max_failed_attempts}"
                ),
                ip_address=ip_address,
                user_agent=user_agent,
            )
            raise InvalidCredentialsError("Invalid username or password")

        user = self._lock_policy.record_success(user)
        self._otp_service.issue(user, now)

        self._security_logger.log(
            SecurityEvent.OTP_SENT,
            user_id=user.id,
            username=user.username,
            success=True,
            detail="OTP sent for MFA",
            ip_address=ip_address,
            user_agent=user_agent,
        )

        return AuthResponse(
            token=None,
            mfa_required=True,
            user_id=user.id,
            username=user.username,
            email=user.email,
            role=user.role,
            message="OTP has been sent to your email. Please verify to complete login.",
        )

    def verify_otp(
        self,
        request: VerifyOtpRequest,
        ip_address: str | None = None,
        user_agent: str | None = None,
        now: datetime | None = None,
    ) -> AuthResponse:
        """Check the emailed passcode and issue the access token.

        Raises:
            UserNotFoundError: If no user matches.
            InvalidCredentialsError: If the passcode is wrong, used or expired.
        """
        user = self._user_db.find_by_username_or_email(request.username_or_email)
        if user is None:
            raise UserNotFoundError("User not found")

        if not self._otp_service.verify(user.id, request.otp_code, now):
            self._security_logger.log(
                SecurityEvent.OTP_VERIFICATION_FAILED,
                user_id=user.id,
                username=user.username,
                success=False,
                detail="Invalid or expired OTP",
                ip_address=ip_address,
                user_agent=user_agent,
            )
            raise InvalidCredentialsError("Invalid or expired OTP")

        self._security_logger.log(
            SecurityEvent.OTP_VERIFIED,
            user_id=user.id,
            username=user.username,
            success=True,
            detail="OTP verified successfully",
            ip_address=ip_address,
            user_agent=user_agent,
        )
        self._security_logger.log(
            SecurityEvent.LOGIN,
            user_id=user.id,
            username=user.username,
            success=True,
            detail="User logged in successfully",
            ip_address=ip_address,
            user_agent=user_agent,
        )

        return AuthResponse(
            token=self._issue_token(user),
            mfa_required=False,
            user_id=user.id,
            username=user.username,
            email=user.email,
            role=user.role,
        )
