import logging
from datetime import datetime
from typing import List, Optional

from schemas.github import ExistingReviewComment, PullRequestFile
from schemas.review import REVIEW_MARKER
from services.github_service import GitHubService

logger = logging.getLogger(__name__)


def last_review_time(comments: List[ExistingReviewComment]) -> Optional[datetime]:
    """Creation time of the newest comment left by a previous run of this action."""
    own = [comment.created_at for comment in comments if REVIEW_MARKER in comment.body]
    return max(own) if own else None


async def filter_files_changed_since_last_review(
    github_service: GitHubService,
    pr_number: int,
    head_sha: str,
    files: List[PullRequestFile],
) -> List[PullRequestFile]:
    reviewed_at = last_review_time(await github_service.list_review_comments(pr_number))
    if reviewed_at is None:
        logger.info("No previous review found, reviewing all files.")
        return files

    logger.info(f"Last review at {reviewed_at.isoformat()}, skipping files unchanged since")
    remaining = []
    for file in files:
        committed_at = await github_service.latest_commit_date(file.filename, head_sha)
        if committed_at is None or committed_at > reviewed_at:
            remaining.append(file)
        else:
            logger.info(f"Skipping {file.filename} - unchanged since last review.")
    return remaining
