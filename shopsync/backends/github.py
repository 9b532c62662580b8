"""Pull backend: the content document as a static JSON file on GitHub.

Reads go to the raw file URL (or any explicit ``url``, e.g. the site's own
``data/content.json``). There is no live push, so ``subscribe`` returns
None and the coordinator falls back to one-shot loads.

Writes are only possible with a token, through the contents API:

GET  /repos/{owner}/{repo}/contents/{path}?ref={branch}   – current file SHA
PUT  /repos/{owner}/{repo}/contents/{path}                – base64 content

Without a token every ``save`` reports ``SaveResult.UNSUPPORTED``.
"""

import base64
import json
import logging
from typing import Optional

import httpx

from shopsync.backends.base import RemoteStore, SaveResult
from shopsync.config import BackendKind, SyncSettings
from shopsync.snapshot import ContentSnapshot, utc_now_iso

logger = logging.getLogger(__name__)


class GitHubBackend(RemoteStore):
    """Static-file remote store backed by a GitHub repository."""

    kind = BackendKind.PULL

    API_URL = "https://api.github.com"
    RAW_URL = "https://raw.githubusercontent.com"

    def __init__(
        self,
        owner: Optional[str] = None,
        repo: Optional[str] = None,
        *,
        branch: str = "main",
        data_file: str = "data/content.json",
        token: Optional[str] = None,
        url: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the backend.

        Args:
            owner: Repository owner
            repo: Repository name
            branch: Branch holding the data file
            data_file: Path of the JSON file inside the repository
            token: GitHub token; enables writes
            url: Explicit URL to read from instead of the raw GitHub URL
            timeout: Request timeout in seconds
            client: Pre-built client (mainly for tests)
        """
        if not url and not (owner and repo):
            raise ValueError("GitHubBackend needs either url or owner and repo")

        self.owner = owner
        self.repo = repo
        self.branch = branch
        self.data_file = data_file.lstrip("/")
        self.token = token
        self.url = url or f"{self.RAW_URL}/{owner}/{repo}/{branch}/{self.data_file}"
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_settings(cls, settings: SyncSettings) -> "GitHubBackend":
        return cls(
            settings.github_owner,
            settings.github_repo,
            branch=settings.github_branch,
            data_file=settings.github_data_file,
            token=settings.github_token,
            url=settings.content_url,
            timeout=settings.http_timeout,
        )

    @property
    def writable(self) -> bool:
        return bool(self.token and self.owner and self.repo)

    @property
    def _contents_url(self) -> str:
        return f"{self.API_URL}/repos/{self.owner}/{self.repo}/contents/{self.data_file}"

    @property
    def _api_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"token {self.token}",
            "Accept": "application/vnd.github.v3+json",
        }

    async def fetch(self) -> Optional[ContentSnapshot]:
        try:
            response = await self._client.get(self.url)
            if response.status_code == 404:
                logger.info(f"No remote content at {self.url} yet")
                return None
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            logger.error(f"Error loading content from {self.url}: {e}")
            return None
        except ValueError as e:
            logger.warning(f"Remote content at {self.url} is not valid JSON: {e}")
            return None

        logger.debug(f"Loaded content from {self.url}")
        return ContentSnapshot.from_remote(data)

    async def save(self, snapshot: ContentSnapshot) -> SaveResult:
        if not self.writable:
            logger.warning(
                "GitHub backend is read-only without a token; save not performed"
            )
            return SaveResult.UNSUPPORTED

        try:
            sha = await self._file_sha()
            content = json.dumps(snapshot.to_dict(), indent=2).encode()
            body = {
                "message": f"Update content - {utc_now_iso()}",
                "content": base64.b64encode(content).decode("ascii"),
                "branch": self.branch,
            }
            if sha:
                body["sha"] = sha

            response = await self._client.put(
                self._contents_url, json=body, headers=self._api_headers
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Error saving content to GitHub: {e}")
            return SaveResult.FAILED

        logger.info(f"Content saved to {self.owner}/{self.repo}:{self.data_file}")
        return SaveResult.SAVED

    async def _file_sha(self) -> Optional[str]:
        """SHA of the current data file, or None if it doesn't exist yet."""
        response = await self._client.get(
            self._contents_url,
            params={"ref": self.branch},
            headers=self._api_headers,
        )
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return response.json().get("sha")

    async def aclose(self) -> None:
        await self._client.aclose()
