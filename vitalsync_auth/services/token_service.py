"""
Token Service.

Issues, validates, and refreshes HS256-signed bearer tokens.

Claims are ``{"sub", "iat", "exp"}`` in integer epoch seconds with
``exp = iat + ttl`` exactly.  Refresh tokens carry
``sub = "refresh:" + account_id`` and a longer TTL; they only mint new
access tokens and are rejected by :meth:`TokenService.validate`.

Expiry is judged against the injected clock rather than PyJWT's own
wall-clock check, so tests can advance time deterministically.  Tokens
are not revocable: a refreshed token does not invalidate its
predecessor, which simply expires on schedule.
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone

import jwt
from pydantic import SecretStr

from vitalsync_auth.errors import AuthError
from vitalsync_auth.logger import StructuredLogger
from vitalsync_auth.models.auth_models import AuthErrorCode, TokenClaims, TokenPair
from vitalsync_auth.utils.general import Clock, utc_now

REFRESH_PREFIX: str = "refresh:"

_REQUIRED_CLAIMS: list[str] = ["sub", "iat", "exp"]


class TokenService:
    """Signed-token issuer bound to one server secret.

    Parameters
    ----------
    secret:
        HMAC key.  Held as ``SecretStr`` so it never appears in reprs.
    logger:
        Structured logger.
    algorithm:
        JWS algorithm passed to PyJWT.
    access_ttl_s:
        Lifetime of access tokens in seconds.
    refresh_ttl_s:
        Lifetime of refresh tokens in seconds.
    clock:
        Source of "now" for ``iat`` and expiry checks.
    """

    def __init__(
        self,
        secret: SecretStr,
        logger: StructuredLogger,
        *,
        algorithm: str = "HS256",
        access_ttl_s: int = 86_400,
        refresh_ttl_s: int = 604_800,
        clock: Clock = utc_now,
    ) -> None:
        self._secret: SecretStr = secret
        self._logger: StructuredLogger = logger
        self._algorithm: str = algorithm
        self._access_ttl_s: int = access_ttl_s
        self._refresh_ttl_s: int = refresh_ttl_s
        self._clock: Clock = clock
        self._iat_lock: threading.Lock = threading.Lock()
        self._last_issued_at: int = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def issue(self, subject: str) -> TokenPair:
        """Issue an access token and its paired refresh token for *subject*."""
        issued_at = self._next_issued_at()
        token, claims = self._encode(subject, issued_at, self._access_ttl_s)
        refresh_token, _ = self._encode(
            REFRESH_PREFIX + subject, issued_at, self._refresh_ttl_s,
        )
        self._logger.info(
            "Issued token pair for %s.", subject,
            extra={"event": "TOKEN_ISSUED", "account_id": subject},
        )
        return TokenPair(token=token, refresh_token=refresh_token, claims=claims)

    async def validate(self, token: str) -> TokenClaims:
        """Verify *token* and return its claims.

        Raises:
            AuthError: ``MALFORMED_TOKEN`` when the token cannot be decoded,
                its signature does not verify, or it is a refresh token;
                ``EXPIRED_TOKEN`` when the clock is past ``exp``.
        """
        return self.check(token)

    async def refresh(self, refresh_token: str | None) -> TokenPair:
        """Mint a new access token from *refresh_token*.

        The returned pair carries the same *refresh_token*; only the
        access token is new, with a strictly greater ``iat``.

        Raises:
            AuthError: ``NO_REFRESH_TOKEN`` when the refresh token is
                absent, undecodable, or not in the refresh namespace;
                ``EXPIRED_TOKEN`` when it has expired.
        """
        if not refresh_token:
            raise AuthError(AuthErrorCode.NO_REFRESH_TOKEN)
        try:
            claims = self._decode(refresh_token)
        except AuthError as exc:
            raise AuthError(AuthErrorCode.NO_REFRESH_TOKEN) from exc

        if not claims.subject.startswith(REFRESH_PREFIX):
            raise AuthError(
                AuthErrorCode.NO_REFRESH_TOKEN,
                "The supplied token is not a refresh token.",
            )
        self._ensure_unexpired(claims)
        self._raise_issued_floor(claims)

        subject = claims.subject[len(REFRESH_PREFIX):]
        token, access_claims = self._encode(
            subject, self._next_issued_at(), self._access_ttl_s,
        )
        self._logger.info(
            "Refreshed access token for %s.", subject,
            extra={"event": "TOKEN_REFRESHED", "account_id": subject},
        )
        return TokenPair(token=token, refresh_token=refresh_token, claims=access_claims)

    def check(self, token: str) -> TokenClaims:
        """Synchronous form of :meth:`validate`.  Performs no I/O."""
        claims = self._decode(token)
        if claims.subject.startswith(REFRESH_PREFIX):
            raise AuthError(
                AuthErrorCode.MALFORMED_TOKEN,
                "Refresh tokens cannot be used as access tokens.",
            )
        self._ensure_unexpired(claims)
        return claims

    def observe(self, token: str | None) -> None:
        """Raise the ``iat`` floor to that of *token*, which may have been
        issued by another instance.  Tokens failing signature or shape
        checks are ignored; expiry is not considered.
        """
        if not token:
            return
        try:
            claims = self._decode(token)
        except AuthError:
            return
        self._raise_issued_floor(claims)

    def is_valid(self, token: str | None) -> bool:
        if not token:
            return False
        try:
            self.check(token)
        except AuthError:
            return False
        return True

    # ------------------------------------------------------------------
    # Encoding
    # ------------------------------------------------------------------

    def _next_issued_at(self) -> int:
        now_s = int(self._clock().timestamp())
        with self._iat_lock:
            issued_at = max(now_s, self._last_issued_at + 1)
            self._last_issued_at = issued_at
        return issued_at

    def _raise_issued_floor(self, claims: TokenClaims) -> None:
        issued_at = int(claims.issued_at.timestamp())
        with self._iat_lock:
            self._last_issued_at = max(self._last_issued_at, issued_at)

    def _encode(self, subject: str, issued_at: int, ttl_s: int) -> tuple[str, TokenClaims]:
        expires_at = issued_at + ttl_s
        token = jwt.encode(
            {"sub": subject, "iat": issued_at, "exp": expires_at},
            self._secret.get_secret_value(),
            algorithm=self._algorithm,
        )
        claims = TokenClaims(
            subject=subject,
            issued_at=datetime.fromtimestamp(issued_at, tz=timezone.utc),
            expires_at=datetime.fromtimestamp(expires_at, tz=timezone.utc),
        )
        return token, claims

    def _decode(self, token: str) -> TokenClaims:
        try:
            payload = jwt.decode(
                token,
                self._secret.get_secret_value(),
                algorithms=[self._algorithm],
                options={
                    "require": _REQUIRED_CLAIMS,
                    "verify_exp": False,
                    "verify_iat": False,
                },
            )
        except jwt.InvalidTokenError as exc:
            self._logger.debug("Token rejected: %s", exc)
            raise AuthError(AuthErrorCode.MALFORMED_TOKEN) from exc

        subject, issued_at, expires_at = payload["sub"], payload["iat"], payload["exp"]
        if not isinstance(subject, str) or not isinstance(issued_at, int) or not isinstance(expires_at, int):
            raise AuthError(AuthErrorCode.MALFORMED_TOKEN)

        return TokenClaims(
            subject=subject,
            issued_at=datetime.fromtimestamp(issued_at, tz=timezone.utc),
            expires_at=datetime.fromtimestamp(expires_at, tz=timezone.utc),
        )

    def _ensure_unexpired(self, claims: TokenClaims) -> None:
        if self._clock() > claims.expires_at:
            raise AuthError(AuthErrorCode.EXPIRED_TOKEN)
