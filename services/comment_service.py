import json
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from schemas.review import (
    ArtifactEntry,
    FileReviewResult,
    PositionedComment,
    SubmissionResult,
    TokenUsage,
)
from services.github_service import GitHubService

logger = logging.getLogger(__name__)


def utc_timestamp(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace(
        "+00:00", "Z"
    )


def artifact_filename(pr_number: int, timestamp: str) -> str:
    safe = timestamp.replace(":", "-").replace(".", "-")
    return f"review-results-pr{pr_number}-{safe}.json"


def build_artifact(results: List[FileReviewResult]) -> List[ArtifactEntry]:
    """Every structurally valid finding, accepted or not."""
    return [
        ArtifactEntry(
            comment=outcome.finding.comment_body,
            file_path=outcome.finding.file_path,
            line=outcome.finding.start_line,
            position=outcome.position,
            severity_level=outcome.finding.severity,
        )
        for result in results
        for outcome in result.outcomes
    ]


def serialize_artifact(artifact: List[ArtifactEntry]) -> str:
    return json.dumps(
        [entry.model_dump(mode="json", by_alias=True) for entry in artifact],
        ensure_ascii=False,
    )


def build_review_comments(comments: List[PositionedComment]) -> List[Dict]:
    """Order comments file by file for the single create-review call."""
    by_file: Dict[str, List[PositionedComment]] = {}
    for comment in comments:
        by_file.setdefault(comment.file_path, []).append(comment)
    return [comment.to_api() for file_comments in by_file.values() for comment in file_comments]


def write_workflow_outputs(output_path: Optional[str], values: Dict[str, str]) -> None:
    if not output_path:
        logger.debug("GITHUB_OUTPUT not set, skipping workflow outputs")
        return
    with open(output_path, "a", encoding="utf-8") as output_file:
        for name, value in values.items():
            delimiter = f"ghadelimiter_{uuid.uuid4()}"
            output_file.write(f"{name}<<{delimiter}\n{value}\n{delimiter}\n")


def format_summary(comment_count: int, usage: TokenUsage, timestamp: str) -> str:
    return (
        "### 🤖 AI Review Summary\n\n"
        f"- Review comments: **{comment_count}**\n"
        f"- Input tokens: {usage.input_tokens:,}\n"
        f"- Output tokens: {usage.output_tokens:,}\n"
        f"- Total tokens: {usage.total_tokens:,}\n\n"
        f"_Generated at {timestamp}_"
    )


class CommentService:
    def __init__(
        self,
        github_service: GitHubService,
        head_sha: str,
        output_path: Optional[str] = None,
        results_dir: Optional[str] = None,
    ):
        self.github_service = github_service
        self.head_sha = head_sha
        self.output_path = output_path
        self.results_dir = results_dir

    def write_artifact_file(self, pr_number: int, payload: str, timestamp: str) -> Optional[str]:
        if not self.results_dir:
            return None
        try:
            directory = Path(self.results_dir)
            directory.mkdir(parents=True, exist_ok=True)
            path = directory / artifact_filename(pr_number, timestamp)
            path.write_text(payload, encoding="utf-8")
        except OSError as e:
            logger.warning(f"Could not write results file to {self.results_dir}: {e}")
            return None
        logger.info(f"Wrote review results to {path}")
        return str(path)

    async def post_summary(
        self, pr_number: int, comment_count: int, usage: TokenUsage, timestamp: str
    ) -> bool:
        try:
            await self.github_service.create_issue_comment(
                pr_number, format_summary(comment_count, usage, timestamp)
            )
        except Exception as e:
            logger.warning(f"Could not post summary comment: {e}")
            return False
        return True

    async def submit(
        self,
        pr_number: int,
        results: List[FileReviewResult],
        usage: TokenUsage,
    ) -> SubmissionResult:
        timestamp = utc_timestamp()
        comments = [comment for result in results for comment in result.comments]
        artifact = build_artifact(results)
        payload = serialize_artifact(artifact)

        write_workflow_outputs(
            self.output_path,
            {
                "comments": payload,
                "comment-count": str(len(comments)),
                "input-tokens": str(usage.input_tokens),
                "output-tokens": str(usage.output_tokens),
                "total-tokens": str(usage.total_tokens),
            },
        )
        submission = SubmissionResult(
            artifact=artifact,
            artifact_path=self.write_artifact_file(pr_number, payload, timestamp),
        )

        if comments:
            logger.info(f"Posting review with {len(comments)} comments")
            review = await self.github_service.create_review(
                pr_number, self.head_sha, build_review_comments(comments)
            )
            submission.review_id = review.get("id")
            submission.submitted_comments = len(comments)
        else:
            logger.info("No valid comments with positions to add.")

        submission.summary_posted = await self.post_summary(
            pr_number, len(comments), usage, timestamp
        )
        return submission
