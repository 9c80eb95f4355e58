"""Addon resolver - Turn an addon key into a concrete download URL.

One resolution function per key variant:
- DirectUrl: the URL itself, no I/O
- VersionedRepo: GitHub release asset URL; "latest" is looked up through the
  redirect of the repository's latest-release page
- PortalLink: two-stage scrape of ModDB (addon page -> download page -> mirror)

Resolution is stateless; callers pass the HTTP client. Nothing here retries:
the portal markup is assumed stable for the duration of a run and a failure
is final for that addon.
"""

import logging
import re
from collections.abc import Callable
from urllib.parse import urljoin

import httpx

from .exceptions import DownloadButtonNotFoundError
from .exceptions import MirrorLinkNotFoundError
from .exceptions import NoReleasesFoundError
from .exceptions import SourceUnreachableError
from .keys import LATEST_TAG
from .keys import VERSION_PLACEHOLDER
from .keys import AddonKey
from .keys import DirectUrl
from .keys import PortalLink
from .keys import VersionedRepo

logger = logging.getLogger(__name__)

USER_AGENT = "anomaly-modpack"

GITHUB_URL = "https://github.com"
MODDB_URL = "https://www.moddb.com"
MODDB_ADDONS_URL = f"{MODDB_URL}/mods/stalker-anomaly/addons/"

# Substrings identifying the links to follow on ModDB pages
DOWNLOAD_BUTTON_MARKER = "addons/start"
MIRROR_LINK_MARKER = "moddb.com/downloads/mirror"

# Path segment a latest-release redirect ends on when the repo has no releases
NO_RELEASE_SEGMENT = "releases"

_HREF_PATTERN = re.compile(r'href="([^"]*)"')


def create_client(timeout: float | None = None) -> httpx.AsyncClient:
    """Create the HTTP client used for resolution and downloads.

    Args:
        timeout: Optional per-request timeout in seconds (None disables it)
    """
    return httpx.AsyncClient(
        headers={"User-Agent": USER_AGENT},
        follow_redirects=True,
        timeout=httpx.Timeout(timeout),
    )


def find_link(html: str, predicate: Callable[[str], bool]) -> str | None:
    """Return the first href attribute value satisfying predicate.

    Plain attribute scanning, not HTML parsing.
    """
    for match in _HREF_PATTERN.finditer(html):
        link = match.group(1)
        if predicate(link):
            return link
    return None


def strip_version_prefix(tag: str) -> str:
    """Tag to version: "v2.4.3" -> "2.4.3", anything else unchanged."""
    return tag[1:] if tag.startswith("v") else tag


async def _get_text(client: httpx.AsyncClient, url: str, key: AddonKey) -> str:
    try:
        response = await client.get(url)
        response.raise_for_status()
    except httpx.HTTPError as e:
        raise SourceUnreachableError(f"Could not fetch {url}: {e}", key=key, context={"url": url}) from e
    return response.text


def resolve_direct_url(key: DirectUrl) -> str:
    return key.url


async def fetch_latest_tag(key: VersionedRepo, client: httpx.AsyncClient) -> str:
    """
    Look up the concrete tag of a repository's latest release.

    GitHub redirects /releases/latest to /releases/tag/<tag>, or back to
    /releases when nothing has been published.

    Raises:
        NoReleasesFoundError: If the repository has no release
        SourceUnreachableError: On network failure or a non-success status
    """
    url = f"{GITHUB_URL}/{key.repo_id}/releases/latest"
    try:
        response = await client.head(url, follow_redirects=True)
    except httpx.HTTPError as e:
        raise SourceUnreachableError(f"Could not reach {url}: {e}", key=key, context={"url": url}) from e

    if not response.is_success:
        raise SourceUnreachableError(
            f"No such repository: {key.repo_id} (HTTP {response.status_code})",
            key=key,
            context={"url": url, "status": response.status_code},
        )

    last_segment = response.url.path.rstrip("/").rsplit("/", 1)[-1]
    if last_segment in (NO_RELEASE_SEGMENT, LATEST_TAG):
        raise NoReleasesFoundError(f"No releases in repository {key.repo_id}", key=key, context={"url": url})

    logger.debug(f"Latest release of {key.repo_id} is {last_segment}")
    return last_segment


async def resolve_versioned_repo(key: VersionedRepo, client: httpx.AsyncClient) -> str:
    """
    Build the release asset URL of a repository key.

    Example:
        >>> key = VersionedRepo(repo_id="org/name", tag="v2.4.3", filename_template="Pack-$VERSION.7z")
        >>> await resolve_versioned_repo(key, client)
        'https://github.com/org/name/releases/download/v2.4.3/Pack-2.4.3.7z'
    """
    tag = key.tag if key.tag != LATEST_TAG else await fetch_latest_tag(key, client)
    filename = key.filename_template.replace(VERSION_PLACEHOLDER, strip_version_prefix(tag))
    return f"{GITHUB_URL}/{key.repo_id}/releases/download/{tag}/{filename}"


async def resolve_portal_link(key: PortalLink, client: httpx.AsyncClient) -> str:
    """
    Scrape ModDB for the mirror URL of an addon.

    Stage 1: the addon page links to the download page ("addons/start").
    Stage 2: the download page links to a mirror ("moddb.com/downloads/mirror").

    Raises:
        DownloadButtonNotFoundError: Stage 1 found no download link
        MirrorLinkNotFoundError: Stage 2 found no mirror link
        SourceUnreachableError: On network failure
    """
    addon_page = f"{MODDB_ADDONS_URL}{key.slug}"
    html = await _get_text(client, addon_page, key)
    start_link = find_link(html, lambda link: DOWNLOAD_BUTTON_MARKER in link)
    if start_link is None:
        raise DownloadButtonNotFoundError(
            f"Couldn't find ModDB download button for {key.slug}", key=key, context={"url": addon_page}
        )

    download_page = urljoin(MODDB_URL, start_link)
    html = await _get_text(client, download_page, key)
    mirror_link = find_link(html, lambda link: MIRROR_LINK_MARKER in link)
    if mirror_link is None:
        raise MirrorLinkNotFoundError(
            f"Couldn't find ModDB mirror link for {key.slug}", key=key, context={"url": download_page}
        )

    return urljoin(MODDB_URL, mirror_link)


async def resolve(key: AddonKey, client: httpx.AsyncClient) -> str:
    """
    Resolve an addon key to its download URL.

    Args:
        key: Addon key of any variant
        client: HTTP client (only used by variants that need I/O)

    Returns:
        Download URL

    Raises:
        ResolutionError: Subclass naming why resolution failed
    """
    if isinstance(key, DirectUrl):
        url = resolve_direct_url(key)
    elif isinstance(key, VersionedRepo):
        url = await resolve_versioned_repo(key, client)
    elif isinstance(key, PortalLink):
        url = await resolve_portal_link(key, client)
    else:
        raise TypeError(f"Unknown addon key type: {type(key).__name__}")

    logger.debug(f"Resolved {key!r} to {url}")
    return url
