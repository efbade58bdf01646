"""
GitHub REST client that collects organization member activity.

Repository-level listings fan out in batches of `batch_size` on a thread pool; each batch is
awaited before the next starts. A repository or page that keeps failing contributes nothing
and is logged, it never aborts the whole organization.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional, Tuple

from models import ActivityRecord
from normalize.activity import in_range, tally_member_activity
from settings import BATCH_SIZE
from storage.cache import Cache, rate_limited_get
from storage.retry import RateLimitState

logger = logging.getLogger(__name__)

GITHUB_API = "https://api.github.com"


class GitHubActivityClient:
    """Fetch members, repositories, issues, pull requests, reviews and commits for an organization."""

    def __init__(
        self,
        token: str = '',
        base_url: str = None,
        cache: Optional[Cache] = None,
        batch_size: int = None,
        per_page: int = 100,
        max_pages: int = 10,
        max_pull_pages: int = 5,
        min_wait: float = 0.5,
    ):
        self.token = token
        self.base_url = (base_url or GITHUB_API).rstrip('/')
        self.headers = {"Accept": "application/vnd.github+json"}
        if token:
            self.headers["Authorization"] = f"Bearer {token}"
        self.cache = cache
        self.batch_size = max(1, int(batch_size or BATCH_SIZE))
        self.per_page = per_page
        self.max_pages = max_pages
        self.max_pull_pages = max_pull_pages
        self.min_wait = min_wait
        self.rate_state = RateLimitState()

    def _get(self, path: str, params: Dict[str, Any] = None, cache_key: str = None) -> Tuple[int, Any]:
        res = rate_limited_get(
            f"{self.base_url}{path}",
            headers=self.headers,
            params=params or {},
            cache=self.cache,
            cache_key=cache_key,
            min_wait=self.min_wait,
            rate_state=self.rate_state,
        )
        return res.get('status', 0), res.get('response')

    def _paginate(self, path: str, params: Dict[str, Any], key_prefix: str, max_pages: int) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        for page in range(1, max_pages + 1):
            page_params = dict(params, page=page, per_page=self.per_page)
            key = f"{key_prefix}:page:{page}:per:{self.per_page}" if self.cache else None
            status, data = self._get(path, page_params, key)
            if status != 200 or not isinstance(data, list):
                if page == 1:
                    raise RuntimeError(f"GET {path} returned status {status}")
                logger.warning("Stopping pagination of %s at page %d (status %s)", path, page, status)
                break
            items.extend(data)
            if len(data) < self.per_page:
                break
        return items

    def _for_each_repo(self, repos: List[Dict[str, Any]], label: str, fn: Callable[[str], List[Dict[str, Any]]]) -> List[Dict[str, Any]]:
        names = [r.get('name') for r in repos if r.get('name')]
        results: List[Dict[str, Any]] = []

        def _safe(name):
            try:
                return fn(name)
            except Exception as ex:
                logger.warning("Skipping %s for repository %s: %s", label, name, ex)
                return []

        with ThreadPoolExecutor(max_workers=self.batch_size) as pool:
            for i in range(0, len(names), self.batch_size):
                batch = names[i:i + self.batch_size]
                for items in pool.map(_safe, batch):
                    results.extend(items)
        logger.info("Fetched %d %s from %d repositories", len(results), label, len(names))
        return results

    def list_members(self, org: str) -> List[Dict[str, Any]]:
        return self._paginate(f"/orgs/{org}/members", {}, f"github:members:{org}", self.max_pages)

    def list_repositories(self, org: str) -> List[Dict[str, Any]]:
        return self._paginate(f"/orgs/{org}/repos", {'sort': 'updated'}, f"github:repos:{org}", self.max_pages)

    def list_issues(self, org: str, start: str, end: str, repos: Optional[List[Dict[str, Any]]] = None) -> List[Dict[str, Any]]:
        """Issues created in [start, end]; pull requests returned by the issues endpoint are skipped."""
        repos = self.list_repositories(org) if repos is None else repos

        def _repo_issues(name):
            raw = self._paginate(
                f"/repos/{org}/{name}/issues",
                {'state': 'all', 'since': start},
                f"github:issues:{org}:{name}:{start}",
                self.max_pages,
            )
            return [i for i in raw if 'pull_request' not in i and in_range(i.get('created_at'), start, end)]

        return self._for_each_repo(repos, 'issues', _repo_issues)

    def list_merge_requests_and_reviews(
        self, org: str, start: str, end: str, repos: Optional[List[Dict[str, Any]]] = None
    ) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
        """Pull requests created in [start, end] and reviews on them submitted in [start, end]."""
        repos = self.list_repositories(org) if repos is None else repos

        def _repo_pulls(name):
            raw = self._paginate(
                f"/repos/{org}/{name}/pulls",
                {'state': 'all', 'sort': 'created', 'direction': 'desc'},
                f"github:pulls:{org}:{name}",
                self.max_pull_pages,
            )
            pulls = [p for p in raw if in_range(p.get('created_at'), start, end)]
            for p in pulls:
                p['_repo_name'] = name
            return pulls

        pulls = self._for_each_repo(repos, 'pull requests', _repo_pulls)

        def _pull_reviews(pull):
            try:
                raw = self._paginate(
                    f"/repos/{org}/{pull['_repo_name']}/pulls/{pull['number']}/reviews",
                    {},
                    f"github:reviews:{org}:{pull['_repo_name']}:{pull['number']}",
                    self.max_pages,
                )
            except Exception as ex:
                logger.warning("Skipping reviews for %s#%s: %s", pull.get('_repo_name'), pull.get('number'), ex)
                return []
            return [r for r in raw if in_range(r.get('submitted_at'), start, end)]

        reviews: List[Dict[str, Any]] = []
        with ThreadPoolExecutor(max_workers=self.batch_size) as pool:
            for i in range(0, len(pulls), self.batch_size):
                for items in pool.map(_pull_reviews, pulls[i:i + self.batch_size]):
                    reviews.extend(items)
        logger.info("Fetched %d reviews on %d pull requests", len(reviews), len(pulls))
        return pulls, reviews

    def list_commits(self, org: str, start: str, end: str, repos: Optional[List[Dict[str, Any]]] = None) -> List[Dict[str, Any]]:
        repos = self.list_repositories(org) if repos is None else repos

        def _repo_commits(name):
            raw = self._paginate(
                f"/repos/{org}/{name}/commits",
                {'since': f"{start[:10]}T00:00:00Z", 'until': f"{end[:10]}T23:59:59Z"},
                f"github:commits:{org}:{name}:{start}:{end}",
                self.max_pages,
            )
            return [c for c in raw if in_range(((c.get('commit') or {}).get('author') or {}).get('date'), start, end)]

        return self._for_each_repo(repos, 'commits', _repo_commits)

    def rate_limit_status(self) -> Dict[str, Optional[int]]:
        """Live /rate_limit call; falls back to the last headers observed when that call fails."""
        status, data = self._get('/rate_limit')
        core = ((data or {}).get('resources') or {}).get('core') if isinstance(data, dict) else None
        if status == 200 and core:
            self.rate_state.update(core.get('limit'), core.get('remaining'), core.get('reset'))
        else:
            logger.warning("Rate limit endpoint returned status %s; using last observed headers", status)
        return self.rate_state.snapshot()

    def collect_member_activities(
        self, org: str, start: str, end: str, member: Optional[str] = None, display_name: Optional[str] = None
    ) -> List[ActivityRecord]:
        """Per-member monthly activity for [start, end]; limited to one member login when given."""
        members = self.list_members(org)
        if member:
            members = [m for m in members if m.get('login') == member]
            if not members:
                logger.info("Member %s not found in organization %s", member, org)
                return []
        repos = self.list_repositories(org)
        issues = self.list_issues(org, start, end, repos)
        pulls, reviews = self.list_merge_requests_and_reviews(org, start, end, repos)
        commits = self.list_commits(org, start, end, repos)
        records = tally_member_activity(members, org, display_name, issues, pulls, reviews, commits)
        logger.info("Collected activity for %d members of %s (%s to %s)", len(records), org, start, end)
        return records
