"""
HTTP client for the hosted backend platform
"""
import httpx
from typing import Optional, List, Dict, Any
from urllib.parse import quote
import logging

from .config import settings
from .errors import BackendError
from .query import Query

logger = logging.getLogger(__name__)


class BackendClient:
    """
    Client for the backend platform: REST collections, remote procedures,
    auth, blob storage and the email/push endpoints.

    One ``httpx.AsyncClient`` is shared by every session-bound copy made with
    ``with_token``.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.BACKEND_URL).rstrip("/")
        self.api_key = api_key or settings.BACKEND_ANON_KEY
        self.token = token
        self.transport = transport
        self.timeout = httpx.Timeout(settings.REQUEST_TIMEOUT, connect=5.0)
        self.client: Optional[httpx.AsyncClient] = None

    async def start(self):
        """Initialize HTTP client"""
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self.transport,
        )
        logger.info(f"Backend client initialized for {self.base_url}")

    async def stop(self):
        """Close HTTP client"""
        if self.client:
            await self.client.aclose()
            self.client = None
            logger.info("Backend client closed")

    def with_token(self, token: Optional[str]) -> "BackendClient":
        """Copy bound to another session, sharing the connection pool"""
        bound = BackendClient(self.base_url, self.api_key, token, self.transport)
        bound.client = self.client
        return bound

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.token or self.api_key}",
        }
        if extra:
            headers.update(extra)
        return headers

    async def request(
        self,
        method: str,
        url: str,
        params: Any = None,
        json: Any = None,
        headers: Optional[Dict[str, str]] = None,
        content: Optional[bytes] = None,
    ) -> Any:
        """Make HTTP request to the backend, raising BackendError on failure"""
        if not self.client:
            logger.error("Backend client not initialized")
            raise BackendError("Backend client not initialized")

        try:
            response = await self.client.request(
                method,
                url,
                params=params,
                json=json,
                content=content,
                headers=self._headers(headers),
            )
        except httpx.TimeoutException as e:
            logger.error(f"Request to {url} timed out: {e}")
            raise BackendError("Operation timed out") from e
        except httpx.HTTPError as e:
            logger.error(f"Request failed for {url}: {e}")
            raise BackendError(str(e) or "Network error") from e

        if response.is_error:
            try:
                body = response.json()
            except ValueError:
                body = {"message": response.text or response.reason_phrase}
            error = BackendError.from_response_body(body, status=response.status_code)
            logger.error(f"HTTP error {response.status_code} for {method} {url}: {error.message}")
            raise error

        if not response.content:
            return None
        return response.json()

    # Collections
    def table(self, name: str) -> Query:
        """Start a query against a named collection"""
        return Query(self, name)

    # Remote procedures
    async def rpc(self, function: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """Invoke a remote procedure by name"""
        logger.info(f"Calling remote procedure {function}")
        return await self.request("POST", f"/rest/v1/rpc/{function}", json=params or {})

    # Auth
    async def get_user(self) -> Optional[Dict[str, Any]]:
        """Current session's user, or None when there is no session"""
        if not self.token:
            return None
        return await self.request("GET", "/auth/v1/user")

    async def update_user(self, attributes: Dict[str, Any]) -> Dict[str, Any]:
        """Update email, password or metadata of the current user"""
        return await self.request("PUT", "/auth/v1/user", json=attributes)

    async def mfa_enroll(
        self,
        factor_type: str = "totp",
        friendly_name: Optional[str] = None
    ) -> Dict[str, Any]:
        """Enroll a new multi-factor authentication factor"""
        payload: Dict[str, Any] = {"factor_type": factor_type}
        if friendly_name:
            payload["friendly_name"] = friendly_name
        return await self.request("POST", "/auth/v1/factors", json=payload)

    async def mfa_challenge(self, factor_id: str) -> Dict[str, Any]:
        """Create a challenge for an enrolled factor"""
        return await self.request("POST", f"/auth/v1/factors/{factor_id}/challenge")

    async def mfa_verify(self, factor_id: str, challenge_id: str, code: str) -> Dict[str, Any]:
        """Verify a challenge with the one-time code"""
        return await self.request(
            "POST",
            f"/auth/v1/factors/{factor_id}/verify",
            json={"challenge_id": challenge_id, "code": code},
        )

    async def link_identity(self, provider: str, redirect_to: Optional[str] = None) -> Dict[str, Any]:
        """Get the authorization URL that links an external identity"""
        params = {"provider": provider, "skip_http_redirect": "true"}
        if redirect_to:
            params["redirect_to"] = redirect_to
        return await self.request("GET", "/auth/v1/user/identities/authorize", params=params)

    # Storage
    async def upload(
        self,
        bucket: str,
        path: str,
        content: bytes,
        content_type: str = "application/octet-stream",
        upsert: bool = False
    ) -> Dict[str, Any]:
        """Upload a blob into a bucket"""
        headers = {"Content-Type": content_type}
        if upsert:
            headers["x-upsert"] = "true"
        logger.info(f"Uploading {len(content)} bytes to {bucket}/{path}")
        return await self.request(
            "POST",
            f"/storage/v1/object/{bucket}/{quote(path)}",
            content=content,
            headers=headers,
        )

    def public_url(self, bucket: str, path: str) -> str:
        """Public URL of an object in a public bucket"""
        return f"{self.base_url}/storage/v1/object/public/{bucket}/{quote(path)}"

    # Transactional email / push
    async def _post_endpoint(self, url: str, payload: Dict[str, Any]) -> Any:
        if not self.token:
            raise BackendError("Authentication required", status=401)
        return await self.request("POST", url, json=payload)

    async def send_email(self, payload: Dict[str, Any]) -> Any:
        """Send a transactional email through the email endpoint"""
        return await self._post_endpoint(settings.EMAIL_ENDPOINT_URL, payload)

    async def send_push(self, payload: Dict[str, Any]) -> Any:
        """Send a push notification through the push endpoint"""
        return await self._post_endpoint(settings.PUSH_ENDPOINT_URL, payload)


async def fetch_profiles(client: BackendClient, user_ids: List[str]) -> Dict[str, Dict[str, Any]]:
    """Profiles keyed by id"""
    if not user_ids:
        return {}
    rows = await (
        client.table("profiles")
        .select("id,username,display_name,avatar_url")
        .in_("id", sorted(set(user_ids)))
        .execute()
    )
    return {row["id"]: row for row in rows or []}


# Global backend client instance
backend_client = BackendClient()


async def get_backend_client() -> BackendClient:
    """Dependency for getting backend client instance"""
    return backend_client
