"""Authentication and account-security configuration."""

from pydantic import BaseModel, Field


class AuthConfig(BaseModel):
    """
    Authentication configuration.

    All durations are in their natural units (minutes for lockout and
    passcode windows, seconds for background intervals) to make
    configuration intuitive.
    """

    # Account lockout
    max_failed_attempts: int = Field(
        default=5,
        description="Failed password attempts within the window before the account locks",
        ge=1,
        le=50,
    )
    failure_window_minutes: int = Field(
        default=10,
        description="A failure older than this starts a new counting window",
        ge=1,
        le=1440,
    )
    lock_duration_minutes: int = Field(
        default=30,
        description="How long an account stays locked",
        ge=1,
        le=10080,
    )

    # One-time passcodes
    otp_length: int = Field(
        default=6,
        description="Digits in an emailed login passcode",
        ge=4,
        le=12,
    )
    otp_expiry_minutes: int = Field(
        default=5,
        description="How long a login passcode remains valid",
        ge=1,
        le=60,
    )
    max_otp_attempts: int = Field(
        default=5,
        description="Wrong passcode submissions before the outstanding passcode is burned",
        ge=1,
        le=20,
    )
    otp_cleanup_interval_seconds: int = Field(
        default=300,
        description="How often expired passcodes are swept",
        ge=10,
    )

    # Request rate limiting
    rate_limit_enabled: bool = Field(
        default=True,
        description="Whether the per-client request gate is active",
    )
    rate_limit_requests_per_minute: int = Field(
        default=60,
        description="Bucket capacity; refills at this many tokens per minute",
        ge=1,
        le=10000,
    )
    rate_limit_max_keys: int = Field(
        default=10000,
        description="Client buckets kept in memory before least-recently-used eviction",
        ge=1,
    )
    trusted_proxies: list[str] = Field(
        default_factory=list,
        description="Proxy addresses or CIDR ranges whose X-Forwarded-For header is believed",
    )

    # Access tokens
    token_expiry_minutes: int = Field(
        default=60,
        description="Lifetime of signed access tokens",
        ge=1,
        le=43200,
    )
    token_issuer: str = Field(
        default="content-platform",
        description="iss claim on signed access tokens",
    )

    # Email delivery
    email_worker_threads: int = Field(
        default=4,
        description="Background threads for fire-and-forget email",
        ge=1,
        le=32,
    )

    # Application
    app_name: str = Field(
        default="Content Platform",
        description="Application name for emails",
    )
