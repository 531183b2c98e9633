import base64
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from schemas.github import CheckRun, ExistingReviewComment, PullRequestFile

logger = logging.getLogger(__name__)

PER_PAGE = 100
CHECK_RUN_NAME = "AI Code Review"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class GitHubService:
    def __init__(
        self,
        token: str,
        repo_full_name: str,
        api_url: str = "https://api.github.com",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.repo_full_name = repo_full_name
        self.api_url = api_url.rstrip("/")
        self._transport = transport
        self._headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github.v3+json",
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.api_url, headers=self._headers, transport=self._transport
        )

    def _repo_url(self, path: str) -> str:
        return f"/repos/{self.repo_full_name}{path}"

    async def _paginate(self, url: str, params: Optional[Dict[str, Any]] = None) -> List[Dict]:
        items: List[Dict] = []
        page = 1
        async with self._client() as client:
            while True:
                response = await client.get(
                    url, params={**(params or {}), "per_page": PER_PAGE, "page": page}
                )
                response.raise_for_status()
                batch = response.json()
                items.extend(batch)
                if len(batch) < PER_PAGE:
                    return items
                page += 1

    async def list_pr_files(self, pr_number: int) -> List[PullRequestFile]:
        data = await self._paginate(self._repo_url(f"/pulls/{pr_number}/files"))
        return [PullRequestFile.model_validate(item) for item in data]

    async def get_file_content(self, path: str, ref: str) -> str:
        async with self._client() as client:
            response = await client.get(
                self._repo_url(f"/contents/{path}"), params={"ref": ref}
            )
            response.raise_for_status()
            data = response.json()

        if not isinstance(data, dict) or "content" not in data:
            raise ValueError(f"Could not get content for {path}")
        if data.get("encoding", "base64") != "base64":
            raise ValueError(f"Unsupported encoding for {path}: {data.get('encoding')}")
        return base64.b64decode(data["content"]).decode("utf-8", errors="replace")

    async def list_review_comments(self, pr_number: int) -> List[ExistingReviewComment]:
        data = await self._paginate(self._repo_url(f"/pulls/{pr_number}/comments"))
        return [ExistingReviewComment.model_validate(item) for item in data]

    async def latest_commit_date(self, path: str, ref: str) -> Optional[datetime]:
        async with self._client() as client:
            response = await client.get(
                self._repo_url("/commits"),
                params={"sha": ref, "path": path, "per_page": 1},
            )
            response.raise_for_status()
            commits = response.json()

        if not commits:
            return None
        date = commits[0]["commit"]["committer"]["date"]
        return datetime.fromisoformat(date.replace("Z", "+00:00"))

    async def create_review(
        self,
        pr_number: int,
        commit_id: str,
        comments: List[Dict],
        body: Optional[str] = None,
    ) -> Dict[str, Any]:
        review_payload: Dict[str, Any] = {
            "commit_id": commit_id,
            "event": "COMMENT",
            "comments": comments,
        }
        if body:
            review_payload["body"] = body

        async with self._client() as client:
            response = await client.post(
                self._repo_url(f"/pulls/{pr_number}/reviews"), json=review_payload
            )

            if response.status_code == 422:
                error_details = response.json()
                logger.error(
                    "GitHub API 422 creating review: "
                    f"{error_details.get('message')} {error_details.get('errors')}"
                )
                logger.error(
                    f"Payload sent: commit={commit_id} comments={len(comments)}"
                    + (f" first={comments[0]}" if comments else "")
                )

            response.raise_for_status()
            logger.info(f"Posted review with {len(comments)} comments to PR #{pr_number}")
            return response.json()

    async def create_check_run(self, head_sha: str) -> CheckRun:
        async with self._client() as client:
            response = await client.post(
                self._repo_url("/check-runs"),
                json={
                    "name": CHECK_RUN_NAME,
                    "head_sha": head_sha,
                    "status": "in_progress",
                    "started_at": _now_iso(),
                },
            )
            response.raise_for_status()
            return CheckRun.model_validate(response.json())

    async def complete_check_run(
        self, check_run_id: int, conclusion: str, summary: str
    ) -> None:
        async with self._client() as client:
            response = await client.patch(
                self._repo_url(f"/check-runs/{check_run_id}"),
                json={
                    "status": "completed",
                    "conclusion": conclusion,
                    "completed_at": _now_iso(),
                    "output": {"title": "AI Code Review Results", "summary": summary},
                },
            )
            response.raise_for_status()

    async def create_issue_comment(self, pr_number: int, body: str) -> Dict[str, Any]:
        async with self._client() as client:
            response = await client.post(
                self._repo_url(f"/issues/{pr_number}/comments"), json={"body": body}
            )
            response.raise_for_status()
            return response.json()
