"""GitHub GraphQL API client for batched release and tag lookups."""

import logging
import os
from typing import Any, Dict, List, Optional, Sequence, Tuple

import requests

from releasebot.domain.release import Release, RepoKey, RepoSnapshot

logger = logging.getLogger(__name__)


class GitHubAPIError(Exception):
    """Raised when a GitHub API call fails as a whole."""
    pass


class RateLimitExceeded(GitHubAPIError):
    """Raised when GitHub API rate limit is exceeded."""
    pass


# Error types GitHub reports for a single aliased repository that the
# current credential cannot read.
INACCESSIBLE_ERROR_TYPES = {"NOT_FOUND", "FORBIDDEN"}

REPOSITORY_FIELDS = """
    releases(last: $depth) {
        nodes {
            url
            isPrerelease
            description
            tag {
                name
            }
        }
    }
    refs(last: $depth, refPrefix: "refs/tags/", orderBy: {field: TAG_COMMIT_DATE, direction: ASC}) {
        nodes {
            name
        }
    }
"""


class GitHubGraphQLClient:
    """Client fetching releases and tags for many repositories per request."""

    GRAPHQL_ENDPOINT = "https://api.github.com/graphql"
    BATCH_SIZE = 50  # Repositories per GraphQL query
    REQUEST_TIMEOUT_SECONDS = 30

    def __init__(self, token: Optional[str] = None, endpoint: Optional[str] = None):
        """
        Initialize GitHub GraphQL client.

        Args:
            token: GitHub personal access token. If None, uses GITHUB_TOKEN env var.
            endpoint: GraphQL endpoint, defaults to the public GitHub API.
        """
        if token is None:
            token = os.getenv("GITHUB_TOKEN")

        self.token = token
        self.endpoint = endpoint or self.GRAPHQL_ENDPOINT

    def _headers(self, token: Optional[str] = None) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        token = token or self.token
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def _execute_query(
        self,
        query: str,
        variables: Optional[Dict[str, Any]] = None,
        token: Optional[str] = None,
    ) -> Tuple[Dict[str, Any], List[Dict[str, Any]]]:
        """
        Execute a GraphQL query.

        Args:
            query: GraphQL query string
            variables: Query variables
            token: Credential to use instead of the client's default one

        Returns:
            Tuple of (response data, GraphQL errors reported alongside the data)

        Raises:
            RateLimitExceeded: If rate limit is exceeded
            GitHubAPIError: If the request fails or returns no data
        """
        payload: Dict[str, Any] = {"query": query}
        if variables:
            payload["variables"] = variables

        try:
            response = requests.post(
                self.endpoint,
                json=payload,
                headers=self._headers(token),
                timeout=self.REQUEST_TIMEOUT_SECONDS
            )
        except requests.exceptions.RequestException as e:
            raise GitHubAPIError(f"Request to GitHub failed: {e}") from e

        if response.status_code == 401:
            raise GitHubAPIError("Authentication failed. Check your GitHub token.")
        if response.status_code == 403:
            remaining = int(response.headers.get("X-RateLimit-Remaining", 1))
            if remaining == 0:
                raise RateLimitExceeded("Rate limit exceeded")
            raise GitHubAPIError(f"Forbidden: {response.text}")
        if response.status_code != 200:
            raise GitHubAPIError(f"GitHub responded with HTTP {response.status_code}: {response.text}")

        try:
            body = response.json()
        except ValueError as e:
            raise GitHubAPIError("Malformed response from GitHub") from e

        if not isinstance(body, dict):
            raise GitHubAPIError("Malformed response from GitHub")

        errors = body.get("errors") or []
        data = body.get("data")

        if errors:
            error_messages = [err.get("message", "") for err in errors]
            if any("rate limit" in msg.lower() for msg in error_messages):
                raise RateLimitExceeded(f"Rate limit exceeded: {error_messages}")
            if not data:
                raise GitHubAPIError(f"GraphQL errors: {error_messages}")

        if not isinstance(data, dict):
            raise GitHubAPIError("GitHub response carries no data")

        return data, errors

    @staticmethod
    def _build_query(count: int) -> str:
        declarations = ["$depth: Int!"]
        selections = []
        for index in range(count):
            declarations.append(f"$owner_{index}: String!")
            declarations.append(f"$name_{index}: String!")
            selections.append(
                f"repo_{index}: repository(owner: $owner_{index}, name: $name_{index}) {{"
                f"{REPOSITORY_FIELDS}}}"
            )
        return "query({}) {{\n{}\n}}".format(", ".join(declarations), "\n".join(selections))

    @staticmethod
    def _parse_releases(node: Optional[Dict[str, Any]]) -> Tuple[Release, ...]:
        if not node:
            return ()
        releases = []
        for item in (node.get("releases") or {}).get("nodes") or []:
            if not item:
                continue
            tag = item.get("tag") or {}
            name = tag.get("name") or ""
            if not name:
                continue
            releases.append(Release(
                name=name,
                url=item.get("url") or "",
                description=item.get("description") or "",
                is_prerelease=bool(item.get("isPrerelease")),
            ))
        return tuple(releases)

    @staticmethod
    def _parse_tags(node: Optional[Dict[str, Any]]) -> Tuple[Release, ...]:
        if not node:
            return ()
        return tuple(
            Release.from_tag(item["name"])
            for item in (node.get("refs") or {}).get("nodes") or []
            if item and item.get("name")
        )

    def _fetch_batch(self, repos: Sequence[RepoKey], depth: int, token: Optional[str]) -> List[RepoSnapshot]:
        variables: Dict[str, Any] = {"depth": depth}
        for index, (owner, name) in enumerate(repos):
            variables[f"owner_{index}"] = owner
            variables[f"name_{index}"] = name

        data, errors = self._execute_query(self._build_query(len(repos)), variables, token=token)

        for error in errors:
            path = error.get("path") or []
            if error.get("type") in INACCESSIBLE_ERROR_TYPES:
                logger.warning(f"Repository {path} is not accessible: {error.get('message', '')}")
            else:
                logger.warning(f"GraphQL error for {path}: {error.get('message', '')}")

        snapshots = []
        for index, (owner, name) in enumerate(repos):
            node = data.get(f"repo_{index}")
            if node is None:
                logger.debug(f"No data returned for {owner}/{name}")
            snapshots.append(RepoSnapshot(
                owner=owner,
                name=name,
                releases=self._parse_releases(node),
                tags=self._parse_tags(node),
            ))
        return snapshots

    def fetch_many(self, repos: Sequence[RepoKey], depth: int = 1, token: Optional[str] = None) -> List[RepoSnapshot]:
        """
        Fetch the latest releases and tags for many repositories.

        Args:
            repos: (owner, name) pairs
            depth: Number of most recent releases and tags per repository
            token: Credential to fetch with, for repositories the default one cannot see

        Returns:
            One snapshot per repository, in input order. Inaccessible
            repositories get empty release and tag lists.

        Raises:
            GitHubAPIError: If any batch request fails as a whole
        """
        if depth < 1:
            raise ValueError("depth must be positive")

        snapshots: List[RepoSnapshot] = []
        for start in range(0, len(repos), self.BATCH_SIZE):
            batch = repos[start:start + self.BATCH_SIZE]
            snapshots.extend(self._fetch_batch(batch, depth, token))
            logger.debug(f"Fetched {len(snapshots)}/{len(repos)} repositories")
        return snapshots

    def can_access(self, owner: str, name: str, token: Optional[str] = None) -> bool:
        """Check whether a repository can be read with the given credential."""
        query = """
        query($owner: String!, $name: String!) {
            repository(owner: $owner, name: $name) {
                id
            }
        }
        """
        try:
            data, _ = self._execute_query(query, {"owner": owner, "name": name}, token=token)
        except GitHubAPIError as e:
            logger.info(f"Repository {owner}/{name} is not accessible: {e}")
            return False
        return bool(data.get("repository"))
