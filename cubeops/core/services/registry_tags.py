"""
Registry tag listing — find which tags an image already has.

Two endpoints are supported:

    Docker Hub (``namespace/repo``, ``repo``)
        GET https://hub.docker.com/v2/repositories/<ns>/<repo>/tags?page_size=100
        paginated through the ``next`` URL

    Registry v2 API (``host[:port]/path``)
        GET https://<host>/v2/<path>/tags/list

An unknown repository (404) has no tags. Anything else that goes wrong
raises ExternalToolError so a publish never guesses a version.
"""

from __future__ import annotations

import base64
import json
import logging
import urllib.error
import urllib.request
from dataclasses import dataclass

from cubeops.core.errors import ExternalToolError
from cubeops.core.models.version import next_version

logger = logging.getLogger(__name__)

HUB_API = "https://hub.docker.com/v2/repositories"
_USER_AGENT = "cubeops/1.0"
_MAX_PAGES = 50


@dataclass(frozen=True)
class ImageRef:
    """An image name split into registry host and repository path."""

    registry: str | None     # None = Docker Hub
    repository: str

    @classmethod
    def parse(cls, image: str) -> ImageRef:
        name = image
        # Drop a tag (the last ':' after the last '/')
        last = name.rsplit("/", 1)[-1]
        if ":" in last:
            name = name[: len(name) - len(last)] + last.split(":", 1)[0]

        first, _, rest = name.partition("/")
        if rest and ("." in first or ":" in first or first == "localhost"):
            return cls(registry=first, repository=rest)
        if "/" not in name:
            return cls(registry=None, repository=f"library/{name}")
        return cls(registry=None, repository=name)

    @property
    def tags_url(self) -> str:
        if self.registry is None:
            return f"{HUB_API}/{self.repository}/tags?page_size=100"
        return f"https://{self.registry}/v2/{self.repository}/tags/list"


def _get_json(url: str, *, auth: tuple[str, str] | None = None, timeout: float = 15.0) -> dict | None:
    """GET a JSON document. Returns None on 404."""
    headers = {"Accept": "application/json", "User-Agent": _USER_AGENT}
    if auth is not None:
        token = base64.b64encode(f"{auth[0]}:{auth[1]}".encode()).decode()
        headers["Authorization"] = f"Basic {token}"

    req = urllib.request.Request(url, headers=headers)
    logger.debug("GET %s", url)
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            return json.loads(resp.read())
    except urllib.error.HTTPError as e:
        if e.code == 404:
            return None
        raise ExternalToolError(f"GET {url}", 1, f"HTTP {e.code} {e.reason}") from e
    except (urllib.error.URLError, TimeoutError, OSError) as e:
        raise ExternalToolError(f"GET {url}", 1, str(e)) from e
    except json.JSONDecodeError as e:
        raise ExternalToolError(f"GET {url}", 1, f"invalid JSON: {e}") from e


def list_tags(image: str, *, auth: tuple[str, str] | None = None) -> list[str]:
    """All tag names of ``image`` in its registry.

    Args:
        image: Image name, with or without a tag.
        auth: Optional (username, password) for private registries.

    Returns:
        Tag names in registry order (empty if the repository is unknown).
    """
    ref = ImageRef.parse(image)

    if ref.registry is not None:
        data = _get_json(ref.tags_url, auth=auth)
        tags = list((data or {}).get("tags") or [])
        logger.info("Found %d tags for %s", len(tags), image)
        return tags

    tags: list[str] = []
    url: str | None = ref.tags_url
    pages = 0
    while url and pages < _MAX_PAGES:
        data = _get_json(url)
        if data is None:
            break
        tags.extend(r["name"] for r in data.get("results", []) if r.get("name"))
        url = data.get("next")
        pages += 1
    logger.info("Found %d tags for %s", len(tags), image)
    return tags


def next_semantic_tag(image: str, *, auth: tuple[str, str] | None = None) -> str:
    """Next free ``x.y.z`` tag for ``image`` (patch bump of the highest)."""
    return str(next_version(list_tags(image, auth=auth)))
