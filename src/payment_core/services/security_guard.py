"""Client-facing security checks for the checkout flow.

Covers rate limiting with temporary blocking, input sanitization, signed
session/CSRF tokens, heuristic amount risk assessment and the
suspicious-activity log. All checks are advisory.
"""

import datetime as dt
import hashlib
import hmac
import html
import logging
import secrets
import time
from collections import deque
from collections.abc import Callable
from itertools import islice
from typing import Any
from urllib.parse import urlsplit, urlunsplit

from payment_core.models.enums import Currency, RiskLevel
from payment_core.models.security import (
    AmountRiskAssessment,
    RateLimitConfig,
    RateLimitEntry,
    RateLimitResult,
    SecurityStats,
    SuspiciousActivity,
)
from payment_core.utils.logging import log_security_event

logger = logging.getLogger(__name__)

MAX_INPUT_LENGTH = 1000
MAX_SUSPICIOUS_ACTIVITIES = 1000
TOKEN_MAX_AGE_SECONDS = 24 * 60 * 60
HIGH_RISK_AMOUNT = 10_000
MEDIUM_RISK_AMOUNT = 1_000
ROUND_AMOUNT_STEP = 1_000
ROUND_AMOUNT_THRESHOLD = 5_000
LOCAL_HOSTNAMES = ("localhost",)

SUPPORTED_CURRENCIES = frozenset(c.value for c in Currency)

CSP_DIRECTIVES = (
    "default-src 'self'",
    "script-src 'self' 'unsafe-inline' https://js.lemonsqueezy.com",
    "style-src 'self' 'unsafe-inline'",
    "img-src 'self' data: https:",
    "font-src 'self'",
    "connect-src 'self' https://api.lemonsqueezy.com",
    "frame-src https://lemonsqueezy.com",
    "form-action 'self' https://lemonsqueezy.com",
    "base-uri 'self'",
    "object-src 'none'",
)


class SecurityGuard:
    """Rate limiter, token issuer and suspicious-activity recorder.

    Blocks are released lazily: any call that reads block state first drops
    blocks whose duration has elapsed, together with their counting entry.

    Usage:
        guard = SecurityGuard(signing_key=key)
        result = guard.check_rate_limit("checkout-form")
        if not result.allowed:
            ...
    """

    def __init__(
        self,
        *,
        signing_key: str | bytes | None = None,
        access_token: str | None = None,
        rate_limit: RateLimitConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the guard.

        Args:
            signing_key: Key for session/CSRF token MACs. A random per-instance
                key is generated when omitted, so tokens do not survive restarts.
            access_token: Shared secret guarding the hidden checkout page.
            rate_limit: Default rate-limit policy.
            clock: Time source returning epoch seconds.
        """
        if signing_key is None:
            logger.warning("No token signing key configured, using an ephemeral key")
            signing_key = secrets.token_bytes(32)
        self._signing_key = (
            signing_key.encode("utf-8") if isinstance(signing_key, str) else signing_key
        )
        self._access_token = access_token
        self._default_config = rate_limit or RateLimitConfig()
        self._clock = clock

        self._rate_limits: dict[str, RateLimitEntry] = {}
        self._blocked: dict[str, float] = {}
        self._suspicious: deque[SuspiciousActivity] = deque(
            maxlen=MAX_SUSPICIOUS_ACTIVITIES
        )

    # Rate limiting

    def _release_expired_blocks(self, now: float) -> None:
        expired = [ident for ident, until in self._blocked.items() if until <= now]
        for identifier in expired:
            del self._blocked[identifier]
            self._rate_limits.pop(identifier, None)
            logger.info("Rate-limit block released for %s", identifier)

    def check_rate_limit(
        self, identifier: str, config: RateLimitConfig | None = None
    ) -> RateLimitResult:
        """Count an attempt for an identifier and decide whether it is allowed.

        Args:
            identifier: Caller key (form name, client address).
            config: Policy override; defaults to the guard's policy.

        Returns:
            RateLimitResult with remaining attempts and window reset time.
        """
        policy = config or self._default_config
        now = self._clock()
        self._release_expired_blocks(now)

        entry = self._rate_limits.get(identifier)
        if entry is None or now - entry.first_attempt > policy.window_seconds:
            self._rate_limits[identifier] = RateLimitEntry(
                count=1, first_attempt=now, last_attempt=now
            )
            return RateLimitResult(
                allowed=True,
                remaining_attempts=policy.max_attempts - 1,
                reset_time=now + policy.window_seconds,
            )

        entry.count += 1
        entry.last_attempt = now

        allowed = entry.count <= policy.max_attempts
        if not allowed:
            self._blocked[identifier] = now + policy.block_duration_seconds
            self.log_suspicious_activity(
                identifier,
                "rate_limit_exceeded",
                {"attempts": entry.count, "window_seconds": policy.window_seconds},
            )

        return RateLimitResult(
            allowed=allowed,
            remaining_attempts=max(0, policy.max_attempts - entry.count),
            reset_time=entry.first_attempt + policy.window_seconds,
        )

    def is_blocked(self, identifier: str) -> bool:
        """Whether an identifier is inside an active block."""
        self._release_expired_blocks(self._clock())
        return identifier in self._blocked

    def cleanup_rate_limits(self) -> int:
        """Drop counting entries idle for longer than the default window.

        Returns:
            Number of entries removed.
        """
        now = self._clock()
        self._release_expired_blocks(now)
        window = self._default_config.window_seconds
        stale = [
            identifier
            for identifier, entry in self._rate_limits.items()
            if now - entry.last_attempt > window and identifier not in self._blocked
        ]
        for identifier in stale:
            del self._rate_limits[identifier]
        if stale:
            logger.debug("Removed %d stale rate-limit entries", len(stale))
        return len(stale)

    # Input handling

    @staticmethod
    def sanitize_input(value: Any) -> str:
        """HTML-escape, trim and truncate user input. Non-strings yield ''."""
        if not isinstance(value, str):
            return ""
        return html.escape(value, quote=True).strip()[:MAX_INPUT_LENGTH]

    @staticmethod
    def normalize_input(value: Any) -> str:
        """Trim and truncate user input without escaping. Non-strings yield ''."""
        if not isinstance(value, str):
            return ""
        return value.strip()[:MAX_INPUT_LENGTH]

    # Tokens

    def _mac(self, message: str) -> str:
        return hmac.new(
            self._signing_key, message.encode("utf-8"), hashlib.sha256
        ).hexdigest()

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _is_fresh(self, timestamp: str) -> bool:
        try:
            issued_ms = int(timestamp)
        except ValueError:
            return False
        return self._now_ms() - issued_ms <= TOKEN_MAX_AGE_SECONDS * 1000

    def generate_session_token(self) -> str:
        """Issue a ``timestamp.random.mac`` session token."""
        timestamp = str(self._now_ms())
        nonce = secrets.token_hex(16)
        return f"{timestamp}.{nonce}.{self._mac(f'{timestamp}.{nonce}')}"

    def validate_session_token(self, token: Any) -> bool:
        """Check structure, MAC and age (24 hours) of a session token."""
        if not token or not isinstance(token, str):
            return False
        parts = token.split(".")
        if len(parts) != 3:
            return False
        timestamp, nonce, mac = parts
        if not hmac.compare_digest(mac, self._mac(f"{timestamp}.{nonce}")):
            return False
        return self._is_fresh(timestamp)

    def generate_csrf_token(self, session_token: str) -> str:
        """Issue a ``timestamp.mac`` CSRF token bound to a session token."""
        timestamp = str(self._now_ms())
        return f"{timestamp}.{self._mac(f'{session_token}.{timestamp}')}"

    def validate_csrf_token(self, token: Any, session_token: Any) -> bool:
        """Check a CSRF token against the session token it was issued for."""
        if not token or not session_token:
            return False
        if not isinstance(token, str) or not isinstance(session_token, str):
            return False
        parts = token.split(".")
        if len(parts) != 2:
            return False
        timestamp, mac = parts
        if not hmac.compare_digest(mac, self._mac(f"{session_token}.{timestamp}")):
            return False
        return self._is_fresh(timestamp)

    def validate_access_token(self, token: str | None) -> bool:
        """Check the hidden-page access token. False when none is configured."""
        if not token or not self._access_token:
            return False
        return hmac.compare_digest(token.encode("utf-8"), self._access_token.encode("utf-8"))

    # Risk assessment

    def validate_payment_amount(self, amount: float, currency: str) -> AmountRiskAssessment:
        """Grade an amount/currency pair. High risk means invalid."""
        reasons: list[str] = []
        risk = RiskLevel.LOW

        if amount > HIGH_RISK_AMOUNT:
            reasons.append("Unusually high amount")
            risk = RiskLevel.HIGH
        elif amount > MEDIUM_RISK_AMOUNT:
            reasons.append("High amount transaction")
            risk = RiskLevel.MEDIUM

        if amount % ROUND_AMOUNT_STEP == 0 and amount >= ROUND_AMOUNT_THRESHOLD:
            reasons.append("Suspicious round number")
            if risk != RiskLevel.HIGH:
                risk = RiskLevel.MEDIUM

        if amount < 1:
            reasons.append("Very small amount - potential testing")
            if risk != RiskLevel.HIGH:
                risk = RiskLevel.MEDIUM

        if str(currency).upper() not in SUPPORTED_CURRENCIES:
            reasons.append("Unsupported currency")
            risk = RiskLevel.HIGH

        return AmountRiskAssessment(valid=risk != RiskLevel.HIGH, risk=risk, reasons=reasons)

    # Headers and transport

    @staticmethod
    def get_csp_header() -> str:
        """Content-Security-Policy scoped to the processor's domains."""
        return "; ".join(CSP_DIRECTIVES)

    @staticmethod
    def https_redirect_url(url: str) -> str | None:
        """HTTPS equivalent of a plain-HTTP URL, or None if no redirect is needed."""
        parts = urlsplit(url)
        if parts.scheme != "http" or parts.hostname in LOCAL_HOSTNAMES:
            return None
        return urlunsplit(parts._replace(scheme="https"))

    # Suspicious activity

    def log_suspicious_activity(
        self, identifier: str, activity: str, details: dict[str, Any] | None = None
    ) -> SuspiciousActivity:
        """Record a suspicious activity and emit a security log event."""
        entry = SuspiciousActivity(
            identifier=identifier,
            activity=activity,
            timestamp=dt.datetime.fromtimestamp(self._clock(), dt.UTC),
            details=details,
        )
        self._suspicious.appendleft(entry)
        log_security_event(logger, activity, identifier, details)
        return entry

    def get_suspicious_activities(self, limit: int = 100) -> list[SuspiciousActivity]:
        """Most recent suspicious activities, newest first."""
        return list(islice(self._suspicious, max(0, limit)))

    def get_security_stats(self) -> SecurityStats:
        """Counts of rate-limit entries, blocks and suspicious activities."""
        now = self._clock()
        self._release_expired_blocks(now)
        hour_ago = dt.datetime.fromtimestamp(now - 3600, dt.UTC)
        return SecurityStats(
            active_rate_limits=len(self._rate_limits),
            blocked_identifiers=len(self._blocked),
            suspicious_activities=len(self._suspicious),
            recent_activities=sum(1 for a in self._suspicious if a.timestamp > hour_ago),
        )
