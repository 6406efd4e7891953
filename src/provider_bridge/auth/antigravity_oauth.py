# src/provider_bridge/auth/antigravity_oauth.py

import os
import json
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import httpx

from ..models import AiModel
from .oauth_exceptions import UserInfoError

lib_logger = logging.getLogger("provider_bridge")

# Antigravity OAuth client, supplied through the environment
CLIENT_ID = os.getenv("ANTIGRAVITY_CLIENT_ID", "REPLACE_WITH_ANTIGRAVITY_OAUTH_CLIENT_ID")
CLIENT_SECRET = os.getenv("ANTIGRAVITY_CLIENT_SECRET", "REPLACE_WITH_ANTIGRAVITY_OAUTH_CLIENT_SECRET")
AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URI = "https://oauth2.googleapis.com/token"
USER_INFO_URI = "https://www.googleapis.com/oauth2/v1/userinfo"

OAUTH_SCOPES = [
    "https://www.googleapis.com/auth/cloud-platform",
    "https://www.googleapis.com/auth/userinfo.email",
    "https://www.googleapis.com/auth/userinfo.profile",
    "https://www.googleapis.com/auth/cclog",
    "https://www.googleapis.com/auth/experimentsandconfigs",
]

ENDPOINT_DAILY = "https://daily-cloudcode-pa.sandbox.googleapis.com"
ENDPOINT_AUTOPUSH = "https://autopush-cloudcode-pa.sandbox.googleapis.com"
ENDPOINT_PROD = "https://cloudcode-pa.googleapis.com"
ENDPOINT_FALLBACKS = [ENDPOINT_DAILY, ENDPOINT_AUTOPUSH, ENDPOINT_PROD]

DEFAULT_PROJECT_ID = "rising-fact-p41fc"
VERSION = "1.15.8"

REQUEST_HEADERS = {
    "User-Agent": f"antigravity/{VERSION}",
    "X-Goog-Api-Client": "google-cloud-sdk vscode_cloudshelleditor/0.1",
    "Client-Metadata": json.dumps(
        {"ideType": "IDE_UNSPECIFIED", "platform": "PLATFORM_UNSPECIFIED", "pluginType": "GEMINI"},
        separators=(",", ":"),
    ),
}

MODELS = [
    AiModel(
        id="antigravity-claude-opus-4-5-thinking",
        name="Claude Opus 4.5 Thinking",
        provider_id="antigravity",
        context_window=200000,
        max_output_tokens=64000,
        supports_thinking=True,
        supports_images=True,
    ),
    AiModel(
        id="antigravity-claude-sonnet-4-5-thinking",
        name="Claude Sonnet 4.5 Thinking",
        provider_id="antigravity",
        context_window=200000,
        max_output_tokens=64000,
        supports_thinking=True,
        supports_images=True,
    ),
    AiModel(
        id="antigravity-claude-sonnet-4-5",
        name="Claude Sonnet 4.5",
        provider_id="antigravity",
        context_window=200000,
        max_output_tokens=64000,
        supports_images=True,
    ),
    AiModel(
        id="antigravity-gemini-3-pro",
        name="Gemini 3 Pro",
        provider_id="antigravity",
        context_window=1048576,
        max_output_tokens=65535,
        supports_thinking=True,
        supports_images=True,
    ),
    AiModel(
        id="antigravity-gemini-3-flash",
        name="Gemini 3 Flash",
        provider_id="antigravity",
        context_window=1048576,
        max_output_tokens=65536,
        supports_thinking=True,
        supports_images=True,
    ),
]

# Ordered: the thinking variants must match before their plain prefixes.
MODEL_ID_MAP = [
    ("claude-opus-4-5-thinking", "claude-opus-4-5-20251101"),
    ("claude-sonnet-4-5-thinking", "claude-sonnet-4-5-20251022"),
    ("claude-sonnet-4-5", "claude-sonnet-4-5-20251022"),
    ("gemini-3-pro", "gemini-3.0-pro"),
    ("gemini-3-flash", "gemini-3.0-flash"),
]


def map_model_id(model: str) -> str:
    """Maps a catalogue id onto the backend model name. Unknown ids pass through."""
    lowered = model.lower()
    for needle, backend_id in MODEL_ID_MAP:
        if needle in lowered:
            return backend_id
    return model


@dataclass
class OAuthProviderConfig:
    client_id: str
    client_secret: Optional[str]
    authorization_url: str
    token_url: str
    redirect_uri: str
    scopes: List[str]
    additional_params: Dict[str, str] = field(default_factory=dict)


def antigravity_oauth_config(redirect_uri: str) -> OAuthProviderConfig:
    return OAuthProviderConfig(
        client_id=CLIENT_ID,
        client_secret=CLIENT_SECRET,
        authorization_url=AUTH_URL,
        token_url=TOKEN_URI,
        redirect_uri=redirect_uri,
        scopes=list(OAUTH_SCOPES),
        additional_params={"access_type": "offline", "prompt": "consent"},
    )


@dataclass
class UserInfo:
    email: str
    name: Optional[str] = None
    picture: Optional[str] = None


@dataclass
class ProjectInfo:
    project_id: str
    endpoint: str


class AntigravityOAuth:
    """
    Antigravity specific calls around the OAuth flow: who the user is, which
    Cloud Code endpoint answers and which project to bill.
    """

    def __init__(self, client: httpx.AsyncClient):
        self._client = client

    async def fetch_user_info(self, access_token: str) -> UserInfo:
        try:
            response = await self._client.get(
                USER_INFO_URI,
                headers={"Authorization": f"Bearer {access_token}"},
                timeout=30.0,
            )
        except httpx.RequestError as e:
            raise UserInfoError(f"Failed to fetch user info: {e}") from e

        if response.status_code >= 400:
            raise UserInfoError(f"Failed to fetch user info: HTTP {response.status_code}")
        try:
            data = response.json()
        except ValueError as e:
            raise UserInfoError("Userinfo endpoint returned a non-JSON response") from e
        if not isinstance(data, dict):
            raise UserInfoError("Userinfo endpoint returned an unexpected response")
        email = data.get("email")
        if not email:
            raise UserInfoError("Missing email in userinfo response")
        return UserInfo(email=email, name=data.get("name"), picture=data.get("picture"))

    async def resolve_project_info(self, access_token: str) -> ProjectInfo:
        """
        Uses the first endpoint (daily, autopush, prod) that answers a health
        check, and resolves the user's project on it. Falls back to prod and
        the shared default project.
        """
        endpoint = ENDPOINT_PROD
        project_id = DEFAULT_PROJECT_ID

        for candidate in ENDPOINT_FALLBACKS:
            if await self._is_endpoint_healthy(candidate, access_token):
                endpoint = candidate
                resolved = await self._try_resolve_project_id(candidate, access_token)
                if resolved:
                    project_id = resolved
                break

        lib_logger.debug(f"Antigravity resolved endpoint={endpoint} project={project_id}")
        return ProjectInfo(project_id=project_id, endpoint=endpoint)

    async def _is_endpoint_healthy(self, endpoint: str, access_token: str) -> bool:
        try:
            response = await self._client.head(
                f"{endpoint}/v1internal",
                headers={"Authorization": f"Bearer {access_token}"},
                timeout=10.0,
            )
        except httpx.RequestError as e:
            lib_logger.debug(f"Antigravity endpoint {endpoint} unreachable: {e}")
            return False
        return response.status_code < 500

    async def _try_resolve_project_id(self, endpoint: str, access_token: str) -> Optional[str]:
        headers = {"Authorization": f"Bearer {access_token}", **REQUEST_HEADERS}
        try:
            response = await self._client.get(
                f"{endpoint}/v1internal/projects/-", headers=headers, timeout=10.0
            )
            if response.status_code >= 400:
                return None
            name = response.json().get("name")
        except (httpx.RequestError, ValueError) as e:
            lib_logger.debug(f"Antigravity project lookup failed on {endpoint}: {e}")
            return None
        if not name:
            return None
        return name[len("projects/"):] if name.startswith("projects/") else name

    @staticmethod
    def build_request_headers(access_token: str, project_id: str) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {access_token}",
            "X-Goog-User-Project": project_id,
        }
        headers.update(REQUEST_HEADERS)
        return headers

    @staticmethod
    def build_chat_url(endpoint: str, project_id: str, model_id: str) -> str:
        return (
            f"{endpoint}/v1internal/projects/{project_id}/locations/us-central1"
            f"/publishers/google/models/{model_id}:generateContent"
        )

    @staticmethod
    def build_streaming_chat_url(endpoint: str, project_id: str, model_id: str) -> str:
        return (
            f"{endpoint}/v1internal/projects/{project_id}/locations/us-central1"
            f"/publishers/google/models/{model_id}:streamGenerateContent?alt=sse"
        )
