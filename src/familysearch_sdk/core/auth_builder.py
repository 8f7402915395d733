"""Interactive sign-in support for the FamilySearch SDK.

Builds the authorization page URL and parses the redirect the browser comes
back with. The browser/redirect mechanism itself belongs to the host
application.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import TYPE_CHECKING
from urllib.parse import parse_qs, urlencode, urlparse

from ..errors import AuthCancelled, AuthError, InvalidConfigError

if TYPE_CHECKING:
    from ..config import FamilySearchConfig

CANCEL_ERRORS = frozenset({"access_denied", "user_cancelled"})


def generate_state() -> str:
    """Generate a random CSRF state value."""
    return secrets.token_urlsafe(32)


@dataclass(frozen=True)
class CallbackResult:
    """What the authorization redirect carried."""

    code: str | None = None
    access_token: str | None = None
    expires_in: int | None = None


class AuthorizationBuilder:
    """Authorization URL construction and callback parsing."""

    def __init__(self, config: FamilySearchConfig) -> None:
        self.config = config

    def build_authorization_url(
        self,
        redirect_uri: str | None = None,
        *,
        state: str | None = None,
        response_type: str = "code",
        extra_params: dict[str, str] | None = None,
    ) -> tuple[str, str]:
        """Build the URL of the sign-in page.

        Args:
            redirect_uri: Registered redirect URI (defaults to ``auth_callback``).
            state: CSRF state (generated if not provided).
            response_type: ``code`` or ``token``.
            extra_params: Additional query parameters.

        Returns:
            Tuple of (authorization_url, state).

        Raises:
            InvalidConfigError: If no redirect URI is known.
        """
        redirect_uri = redirect_uri or self.config.auth_callback
        if not redirect_uri:
            raise InvalidConfigError("auth_callback is required for interactive sign-in", field="auth_callback")

        state = state or generate_state()
        params: dict[str, str] = {
            "response_type": response_type,
            "client_id": self.config.app_key,
            "redirect_uri": redirect_uri,
            "state": state,
        }
        if extra_params:
            params.update(extra_params)

        return f"{self.config.authorization_endpoint}?{urlencode(params)}", state

    def parse_callback(
        self,
        callback_url: str,
        expected_state: str | None,
    ) -> CallbackResult:
        """Parse the redirect URI the sign-in page sent the browser to.

        Values are read from both the query string and the fragment.

        Args:
            callback_url: The full redirect URI.
            expected_state: State issued with the authorization URL, or None
                to skip the CSRF check.

        Returns:
            The code or token carried by the redirect.

        Raises:
            AuthCancelled: The user declined or closed the sign-in page.
            AuthError: The redirect reports another error or the state mismatches.
        """
        parsed = urlparse(callback_url)
        params = {k: v[0] for k, v in parse_qs(parsed.query).items()}
        params.update({k: v[0] for k, v in parse_qs(parsed.fragment).items()})

        if "error" in params:
            error = params["error"]
            description = params.get("error_description", "")
            details = {"error": error, "error_description": description}
            if error in CANCEL_ERRORS:
                raise AuthCancelled(details=details)
            msg = f"Authorization error: {error}"
            if description:
                msg += f" - {description}"
            raise AuthError(msg, status_code=None, details=details)

        if "access_token" not in params and "code" not in params:
            # Redirect without code or token: the user backed out of the page.
            raise AuthCancelled("No authorization code in callback")

        if expected_state is not None and params.get("state") != expected_state:
            raise AuthError("State mismatch - possible CSRF attack", status_code=None)

        if "access_token" in params:
            expires_in = params.get("expires_in")
            return CallbackResult(
                access_token=params["access_token"],
                expires_in=int(expires_in) if expires_in and expires_in.isdigit() else None,
            )

        return CallbackResult(code=params["code"])
