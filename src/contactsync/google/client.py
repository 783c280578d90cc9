"""Google People API client with OAuth2."""

import http.server
import logging
import urllib.parse
import webbrowser
from collections.abc import AsyncIterator

import httpx

from contactsync.config import Settings
from contactsync.exceptions import GoogleAPIError, GoogleAuthError, RateLimitError
from contactsync.models import ContactDraft

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_PEOPLE_API_BASE = "https://people.googleapis.com/v1"

# Person fields read from the API
PERSON_FIELDS = ",".join([
    "names",
    "emailAddresses",
    "phoneNumbers",
    "birthdays",
    "organizations",
    "biographies",
    "addresses",
    "urls",
    "photos",
    "metadata",
])

# Person fields we are allowed to write back
UPDATABLE_FIELDS = (
    "names",
    "emailAddresses",
    "phoneNumbers",
    "birthdays",
    "organizations",
    "biographies",
    "addresses",
    "urls",
)


class _OAuthCallback(http.server.BaseHTTPRequestHandler):
    """Captures the ``code`` (or ``error``) Google redirects back with."""

    result: dict[str, str] = {}

    def do_GET(self):
        query = urllib.parse.parse_qs(urllib.parse.urlparse(self.path).query)
        if "code" in query:
            type(self).result = {"code": query["code"][0]}
            status, body = 200, "<h1>Authorized.</h1><p>You can return to the terminal.</p>"
        else:
            message = (query.get("error_description") or query.get("error") or ["no code"])[0]
            type(self).result = {"error": message}
            status, body = 400, f"<h1>Authorization failed: {message}</h1>"
        self.send_response(status)
        self.send_header("Content-type", "text/html")
        self.end_headers()
        self.wfile.write(body.encode())

    def log_message(self, format, *args):
        pass


class GoogleContactsClient:
    """Async client for the Google People API using a stored refresh token."""

    SCOPES = ["https://www.googleapis.com/auth/contacts"]

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient | None = None):
        self.settings = settings
        self._access_token: str | None = None
        self._client: httpx.AsyncClient | None = http_client

    @property
    def is_configured(self) -> bool:
        """Whether credentials for a refresh-token exchange are present."""
        return bool(
            self.settings.google_client_id
            and self.settings.google_client_secret
            and self.settings.google_refresh_token
        )

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=30.0)
        return self._client

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()

    async def _refresh_token(self) -> str:
        """Exchange the refresh token for a fresh access token."""
        if not self.is_configured:
            raise GoogleAuthError("Google credentials incomplete. Run 'contactsync auth' first.")

        client = await self._get_client()
        try:
            response = await client.post(
                GOOGLE_TOKEN_URL,
                data={
                    "client_id": self.settings.google_client_id,
                    "client_secret": self.settings.google_client_secret,
                    "grant_type": "refresh_token",
                    "refresh_token": self.settings.google_refresh_token,
                },
            )
        except httpx.HTTPError as e:
            raise GoogleAuthError(f"Token refresh request failed: {e}") from e

        if response.status_code != 200:
            raise GoogleAuthError(
                f"Token refresh failed ({response.status_code}): {response.text}",
                status_code=response.status_code,
            )

        self._access_token = response.json()["access_token"]
        logger.debug("Refreshed Google access token")
        return self._access_token

    async def get_access_token(self) -> str:
        """Cached access token, refreshed on first use."""
        if self._access_token is None:
            return await self._refresh_token()
        return self._access_token

    async def _send(
        self, method: str, endpoint: str, token: str, params: dict | None, json: dict | None
    ) -> httpx.Response:
        client = await self._get_client()
        return await client.request(
            method,
            f"{GOOGLE_PEOPLE_API_BASE}{endpoint}",
            params=params,
            json=json,
            headers={"Authorization": f"Bearer {token}"},
        )

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: dict | None = None,
        json: dict | None = None,
    ) -> dict:
        """Authenticated call; one retry with a new token on 401."""
        try:
            response = await self._send(
                method, endpoint, await self.get_access_token(), params, json
            )
            if response.status_code == 401:
                response = await self._send(
                    method, endpoint, await self._refresh_token(), params, json
                )
        except httpx.HTTPError as e:
            raise GoogleAPIError(f"Google People API request failed: {e}") from e

        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After", "")
            raise RateLimitError(int(retry_after) if retry_after.isdigit() else None)

        if response.status_code >= 400:
            raise GoogleAPIError(
                f"Google People API error ({response.status_code}): {response.text}",
                status_code=response.status_code,
            )

        return response.json() if response.content else {}

    def authorize(self, port: int = 36133) -> dict:
        """Interactive consent flow that yields a new refresh token.

        Opens the consent page in a browser, waits (up to two minutes) for
        Google to redirect to a one-shot local server, then trades the code
        for tokens. Returns the token response (``refresh_token`` included).
        """
        redirect_uri = f"http://localhost:{port}/callback"
        query = urllib.parse.urlencode({
            "client_id": self.settings.google_client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.SCOPES),
            # offline + forced consent so Google issues a refresh token
            "access_type": "offline",
            "prompt": "consent",
        })

        _OAuthCallback.result = {}
        server = http.server.HTTPServer(("localhost", port), _OAuthCallback)
        server.timeout = 120
        try:
            webbrowser.open(f"{GOOGLE_AUTH_URL}?{query}")
            server.handle_request()
        finally:
            server.server_close()

        result = _OAuthCallback.result
        if "code" not in result:
            raise GoogleAuthError(f"Authorization failed: {result.get('error', 'timed out')}")

        response = httpx.post(
            GOOGLE_TOKEN_URL,
            data={
                "client_id": self.settings.google_client_id,
                "client_secret": self.settings.google_client_secret,
                "code": result["code"],
                "grant_type": "authorization_code",
                "redirect_uri": redirect_uri,
            },
        )
        if response.status_code != 200:
            raise GoogleAuthError(f"Token exchange failed: {response.text}")
        return response.json()

    async def iter_contacts(self, page_size: int = 1000) -> AsyncIterator[dict]:
        """
        Yield every person resource from people.connections.list.

        Pages are fetched lazily, one request per page.
        """
        page_token = None

        while True:
            params = {
                "personFields": PERSON_FIELDS,
                "pageSize": page_size,
            }
            if page_token:
                params["pageToken"] = page_token

            data = await self._request("GET", "/people/me/connections", params=params)

            for person in data.get("connections", []):
                yield person

            page_token = data.get("nextPageToken")
            if not page_token:
                break

    async def count_contacts(self) -> int:
        """Total number of connections, read from a one-item page."""
        data = await self._request(
            "GET",
            "/people/me/connections",
            params={"personFields": "metadata", "pageSize": 1},
        )
        return int(data.get("totalPeople", data.get("totalItems", 0)))

    async def get_contact(self, resource_name: str) -> dict:
        """
        Fetch a single contact by resourceName.

        Args:
            resource_name: Google People API resourceName (e.g., "people/c123456")

        Returns:
            Person resource dict
        """
        return await self._request(
            "GET",
            f"/{resource_name}",
            params={"personFields": PERSON_FIELDS},
        )

    async def search_contacts(self, query: str) -> list[dict]:
        """Search the user's contacts (names, emails, phones) for ``query``."""
        data = await self._request(
            "GET",
            "/people:searchContacts",
            params={"query": query, "readMask": PERSON_FIELDS},
        )
        return [result["person"] for result in data.get("results", []) if "person" in result]

    async def create_contact(
        self, contact: ContactDraft, omit: frozenset[str] = frozenset()
    ) -> dict:
        """Create a contact; returns the new person resource."""
        return await self._request(
            "POST",
            "/people:createContact",
            params={"personFields": PERSON_FIELDS},
            json=contact.to_google_person(omit=omit),
        )

    async def update_contact(
        self, resource_name: str, contact: ContactDraft, omit: frozenset[str] = frozenset()
    ) -> dict:
        """
        Update existing contact via People API.

        The current etag is fetched first; Google rejects updates without it.

        Args:
            resource_name: Google People API resourceName
            contact: contact with updated data
            omit: field groups to leave out of both the body and the update mask

        Returns:
            Updated person resource
        """
        current = await self.get_contact(resource_name)
        person = contact.to_google_person(omit=omit)

        update_fields = [field for field in UPDATABLE_FIELDS if field in person]
        if not update_fields:
            return current
        person["etag"] = current.get("etag", "")

        return await self._request(
            "PATCH",
            f"/{resource_name}:updateContact",
            params={"updatePersonFields": ",".join(update_fields)},
            json=person,
        )

    async def delete_contact(self, resource_name: str) -> None:
        """Delete a contact by resourceName."""
        await self._request("DELETE", f"/{resource_name}:deleteContact")
