"""
Email gateway client for sending security emails via HTTP gateway.

Uses HMAC-SHA256 signature for request authentication. Every failure is
raised as EmailGatewayError; callers decide whether delivery matters.
"""

import hashlib
import hmac
import json
import logging

import requests

logger = logging.getLogger(__name__)


class EmailGatewayError(Exception):
    """Raised when email gateway request fails."""


class EmailGatewayClient:
    """Send emails via HTTP gateway with HMAC signature verification."""

    def __init__(
        self,
        gateway_url: str,
        api_key: str,
        hmac_secret: str,
        app_name: str = "Content Platform",
        timeout_seconds: float = 10,
    ):
        """
        Initialize with gateway credentials.

        Args:
            gateway_url: Full URL to the email gateway endpoint
            api_key: API key for X-API-Key header
            hmac_secret: Secret for HMAC-SHA256 signature
            app_name: Product name used in subjects and signatures
            timeout_seconds: Upper bound on each gateway request

        Raises:
            ValueError: If any credential is empty
        """
        if not gateway_url:
            raise ValueError("gateway_url is required")
        if not api_key:
            raise ValueError("api_key is required")
        if not hmac_secret:
            raise ValueError("hmac_secret is required")

        self.gateway_url = gateway_url
        self.api_key = api_key
        self.hmac_secret = hmac_secret
        self.app_name = app_name
        self.timeout_seconds = timeout_seconds

    def _sign_and_send(self, payload: dict) -> None:
        """
        Sign payload with HMAC and send to gateway.

        Raises:
            EmailGatewayError: On any failure
        """
        payload_json = json.dumps(payload, separators=(",", ":"))

        signature = hmac.new(
            self.hmac_secret.encode("utf-8"),
            payload_json.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

        headers = {
            "Content-Type": "application/json",
            "X-API-Key": self.api_key,
            "X-Signature": signature,
        }

        try:
            response = requests.post(
                self.gateway_url,
                data=payload_json,
                headers=headers,
                timeout=self.timeout_seconds,
            )
        except (requests.exceptions.RequestException, ConnectionError) as e:
            logger.error(f"Email gateway connection failed: {e}")
            raise EmailGatewayError(f"Connection failed: {e}")

        try:
            response_data = response.json()
        except ValueError:
            logger.error(f"Email gateway returned invalid JSON: {response.text}")
            raise EmailGatewayError("Invalid response from gateway")

        if response.status_code != 200 or not response_data.get("success"):
            error_msg = response_data.get("message", "Unknown error")
            logger.error(f"Email gateway error: {error_msg}")
            raise EmailGatewayError(f"Gateway error: {error_msg}")

    def send_otp(self, email: str, code: str, username: str, ttl_minutes: int) -> None:
        """
        Send a login one-time passcode.

        Raises:
            EmailGatewayError: On any failure
        """
        body = (
            f"Hello {username},\n\n"
            f"Your one-time passcode for login is: {code}\n\n"
            f"This code will expire in {ttl_minutes} minutes.\n\n"
            "If you did not request this, please ignore this email.\n\n"
            f"Best regards,\n{self.app_name}"
        )
        self.send_email(
            to=email,
            subject="Your Login OTP Code",
            body=body,
            sender="auth",
        )

    def send_welcome(self, email: str, username: str) -> None:
        """
        Send the post-registration welcome email.

        Raises:
            EmailGatewayError: On any failure
        """
        body = (
            f"Hello {username},\n\n"
            f"Welcome to {self.app_name}!\n\n"
            "Your account has been successfully created.\n\n"
            f"Best regards,\n{self.app_name}"
        )
        self.send_email(
            to=email,
            subject=f"Welcome to {self.app_name}",
            body=body,
            sender="system",
        )

    def send_email(
        self,
        to: str,
        subject: str,
        body: str,
        sender: str = "system",
    ) -> None:
        """
        Send an arbitrary email via gateway.

        Args:
            to: Recipient email address
            subject: Email subject line
            body: Plain text email body
            sender: Sender identity - "auth" or "system" (default: "system")

        Raises:
            ValueError: If sender is invalid
            EmailGatewayError: On gateway failure
        """
        if sender not in ("auth", "system"):
            raise ValueError(f"sender must be 'auth' or 'system', got '{sender}'")

        payload = {
            "type": "custom",
            "email": to,
            "subject": subject,
            "body": body,
            "sender": sender,
        }
        self._sign_and_send(payload)
        logger.info(f"Email sent to {to}: {subject}")
