"""Release artifact fetching: GitHub releases or a local artifacts folder."""

import logging
import os
import re
import ssl
from dataclasses import dataclass
from pathlib import Path

import httpx
import truststore
from rich.panel import Panel

from .constants import ARTIFACT_PREFIX, REPO_NAME, REPO_OWNER
from .ui import console

logger = logging.getLogger(__name__)

API_TIMEOUT = 30
DOWNLOAD_TIMEOUT = 60
CHUNK_SIZE = 8192

LOCAL_VERSION_RE = re.compile(r"-(v\d+\.\d+\.\d+)\.zip$")


class ArtifactError(RuntimeError):
    """A release artifact could not be resolved or downloaded."""


@dataclass
class ReleaseMetadata:
    filename: str
    size: int
    release: str
    asset_url: str


@dataclass
class FetchedArtifact:
    zip_path: Path
    metadata: ReleaseMetadata
    # Downloaded into a scratch folder and deleted at cleanup; local artifacts never are
    temporary: bool = True


def github_token(cli_token: str | None = None) -> str | None:
    """Return sanitized GitHub token (cli arg takes precedence) or None."""
    return ((cli_token or os.getenv("GH_TOKEN") or os.getenv("GITHUB_TOKEN") or "").strip()) or None


def github_auth_headers(cli_token: str | None = None) -> dict:
    """Return Authorization header dict only when a non-empty token exists."""
    token = github_token(cli_token)
    return {"Authorization": f"Bearer {token}"} if token else {}


def build_client(skip_tls: bool = False) -> httpx.Client:
    if skip_tls:
        return httpx.Client(verify=False)
    ssl_context = truststore.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    return httpx.Client(verify=ssl_context)


def artifact_pattern(agent: str, script_type: str) -> str:
    return f"{ARTIFACT_PREFIX}-{agent}-{script_type}"


class GitHubArtifactFetcher:
    """Downloads per-agent template zips from the latest published release.

    The release listing is requested once and reused for every agent.
    """

    def __init__(self, client: httpx.Client, *, token: str | None = None, debug: bool = False,
                 owner: str = REPO_OWNER, repo: str = REPO_NAME):
        self.client = client
        self.token = token
        self.debug = debug
        self.releases_url = f"https://api.github.com/repos/{owner}/{repo}/releases"
        self._release: dict | None = None

    def describe(self) -> str:
        return "GitHub releases"

    def latest_release(self) -> dict:
        if self._release is not None:
            return self._release

        # /releases/latest is unreliable for private repos; list and pick instead
        try:
            response = self.client.get(
                self.releases_url,
                timeout=API_TIMEOUT,
                follow_redirects=True,
                headers=github_auth_headers(self.token),
            )
        except httpx.HTTPError as e:
            raise ArtifactError(f"Error fetching release information: {e}") from e

        if response.status_code != 200:
            msg = f"GitHub API returned {response.status_code} for {self.releases_url}"
            if self.debug:
                msg += f"\nResponse headers: {response.headers}\nBody (truncated 500): {response.text[:500]}"
            raise ArtifactError(msg)
        try:
            releases = response.json()
        except ValueError as je:
            raise ArtifactError(f"Failed to parse release JSON: {je}\nRaw (truncated 400): {response.text[:400]}") from je
        if not isinstance(releases, list):
            raise ArtifactError("Unexpected release listing from GitHub API")

        release = next((r for r in releases if not r.get("draft") and not r.get("prerelease")), None)
        if release is None:
            raise ArtifactError("No published releases found")
        logger.debug("Latest published release: %s", release.get("tag_name"))
        self._release = release
        return release

    def fetch(self, agent: str, script_type: str, download_dir: Path) -> FetchedArtifact:
        release = self.latest_release()
        assets = release.get("assets") or []
        pattern = artifact_pattern(agent, script_type)
        asset = next(
            (a for a in assets if a.get("name", "").startswith(f"{pattern}-") and a["name"].endswith(".zip")),
            None,
        )
        if asset is None:
            names = "\n".join(a.get("name", "?") for a in assets) or "(no assets)"
            if self.debug:
                console.print(Panel(names, title="Available Assets", border_style="yellow"))
            raise ArtifactError(f"No matching release asset found for {agent} (expected pattern: {pattern})")

        filename = asset["name"]
        zip_path = Path(download_dir) / filename
        # The asset API url works for private repos, browser_download_url does not
        asset_url = asset["url"]
        headers = {**github_auth_headers(self.token), "Accept": "application/octet-stream"}

        logger.debug("Downloading %s (%s bytes)", filename, asset.get("size"))
        try:
            with self.client.stream(
                "GET",
                asset_url,
                timeout=DOWNLOAD_TIMEOUT,
                follow_redirects=True,
                headers=headers,
            ) as response:
                if response.status_code != 200:
                    response.read()
                    raise ArtifactError(
                        f"Download failed with {response.status_code}\nBody (truncated): {response.text[:400]}"
                    )
                with open(zip_path, "wb") as f:
                    for chunk in response.iter_bytes(chunk_size=CHUNK_SIZE):
                        f.write(chunk)
        except (httpx.HTTPError, OSError) as e:
            if zip_path.exists():
                zip_path.unlink()
            raise ArtifactError(f"Error downloading template: {e}") from e

        metadata = ReleaseMetadata(
            filename=filename,
            size=asset.get("size") or zip_path.stat().st_size,
            release=release.get("tag_name", "unknown"),
            asset_url=asset_url,
        )
        return FetchedArtifact(zip_path=zip_path, metadata=metadata, temporary=True)


class LocalArtifactFetcher:
    """Resolves artifacts built locally, e.g. by create-release-packages.sh."""

    def __init__(self, local_dir: Path | str):
        self.local_dir = Path(local_dir).resolve()

    def describe(self) -> str:
        return f"local artifacts in {self.local_dir}"

    def _build_hint(self, agent: str, script_type: str) -> str:
        return (
            "To generate the required artifact, run:\n"
            f"AGENTS={agent} SCRIPTS={script_type} .github/workflows/scripts/create-release-packages.sh v0.0.99"
        )

    def fetch(self, agent: str, script_type: str, download_dir: Path | None = None) -> FetchedArtifact:
        if not self.local_dir.is_dir():
            raise ArtifactError(
                f"Local artifacts directory not found: {self.local_dir}\n\n{self._build_hint(agent, script_type)}"
            )

        pattern = f"{artifact_pattern(agent, script_type)}-v*.zip"
        matches = sorted(self.local_dir.glob(pattern), reverse=True)
        if not matches:
            available = sorted(p.name for p in self.local_dir.glob(f"{ARTIFACT_PREFIX}-*.zip"))
            listing = (
                "Available artifacts:\n" + "\n".join(f"  - {name}" for name in available)
                if available else "No artifacts found. The directory is empty."
            )
            raise ArtifactError(
                f"Local artifact not found.\nExpected pattern: {pattern}\nSearched in: {self.local_dir}\n"
                f"{listing}\n\n{self._build_hint(agent, script_type)}"
            )

        # vX.Y.Z names sort correctly for the versions the release scripts produce
        selected = matches[0]
        size = selected.stat().st_size
        if size == 0:
            raise ArtifactError(f"Local artifact is empty: {selected}")

        version = LOCAL_VERSION_RE.search(selected.name)
        if version is None:
            raise ArtifactError(
                f"Invalid artifact filename format: {selected.name}\n"
                f"Expected format: {ARTIFACT_PREFIX}-{{agent}}-{{script}}-{{version}}.zip"
            )

        if len(matches) > 1:
            console.print(
                f"[yellow]Found {len(matches)} matching artifacts for {agent}. Using latest: {selected.name}[/yellow]"
            )

        metadata = ReleaseMetadata(
            filename=selected.name,
            size=size,
            release=version.group(1),
            asset_url=str(selected),
        )
        return FetchedArtifact(zip_path=selected, metadata=metadata, temporary=False)
