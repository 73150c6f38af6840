"""HTTP client that resolves bearer tokens against the identity provider."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    """The authenticated caller as reported by the identity provider."""

    user_id: str
    email: str | None = None


class IdentityClient:
    """Thin async wrapper around the identity provider's user endpoint.

    ``resolve`` returns ``None`` for any token the provider does not accept,
    including transport failures, so the caller can answer 401 uniformly.
    No result is cached; every request costs one provider round-trip.

    Parameters
    ----------
    base_url:
        Root URL of the identity provider.  Empty means unconfigured.
    public_key:
        The provider's public (anon) key, sent as the ``apikey`` header.
    timeout:
        Per-request timeout in seconds.
    """

    def __init__(self, base_url: str, public_key: str, timeout: float = 5.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._public_key = public_key
        self._client = httpx.AsyncClient(
            base_url=self._base_url or "http://identity.invalid",
            timeout=httpx.Timeout(timeout),
        )

    @property
    def configured(self) -> bool:
        return bool(self._base_url and self._public_key)

    async def resolve(self, token: str) -> Identity | None:
        """Return the identity behind *token*, or ``None`` if it is not valid."""
        if not token:
            return None

        try:
            response = await self._client.get(
                "/auth/v1/user",
                headers={
                    "apikey": self._public_key,
                    "Authorization": f"Bearer {token}",
                },
            )
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as exc:
            logger.info("Identity provider rejected token: status=%d", exc.response.status_code)
            return None
        except httpx.RequestError as exc:
            logger.warning("Identity provider request failed: %s", exc)
            return None
        except ValueError:
            logger.warning("Identity provider returned a non-JSON body")
            return None

        if not isinstance(body, dict):
            return None
        user_id = body.get("id")
        if not isinstance(user_id, str) or not user_id:
            logger.warning("Identity provider response has no user id")
            return None

        email = body.get("email")
        return Identity(user_id=user_id, email=email if isinstance(email, str) and email else None)

    async def close(self) -> None:
        """Close the underlying HTTP connection pool."""
        await self._client.aclose()
