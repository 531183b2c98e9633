import logging
from typing import List, Optional

import httpx

from core.review_config import ReviewConfig
from schemas.github import EnhancedFile, PullRequestContext, PullRequestFile
from schemas.review import FileReviewResult, SubmissionResult
from services.comment_service import CommentService
from services.github_service import GitHubService
from services.incremental import filter_files_changed_since_last_review
from services.review_service import ReviewService, build_enhanced_file

logger = logging.getLogger(__name__)


def select_reviewable_files(
    files: List[PullRequestFile], config: ReviewConfig
) -> List[PullRequestFile]:
    selected = []
    for file in files:
        if config.is_excluded(file.filename):
            logger.info(f"Skipping {file.filename} - excluded by configuration.")
        elif file.status == "removed":
            logger.info(f"Skipping {file.filename} - file was removed.")
        elif not file.patch:
            logger.info(f"Skipping {file.filename} - no changes to review.")
        else:
            selected.append(file)
    return selected


async def load_enhanced_file(
    github_service: GitHubService, file: PullRequestFile, ref: str
) -> EnhancedFile:
    full_content = None
    try:
        full_content = await github_service.get_file_content(file.filename, ref)
    except (httpx.HTTPError, ValueError) as e:
        logger.warning(f"Could not fetch full content of {file.filename}: {e}")
    return build_enhanced_file(file, full_content)


async def _complete_check_run(
    github_service: GitHubService, check_run_id: Optional[int], conclusion: str, summary: str
) -> None:
    if check_run_id is None:
        return
    await github_service.complete_check_run(check_run_id, conclusion, summary)


async def orchestrate_review(
    context: PullRequestContext,
    config: ReviewConfig,
    github_service: GitHubService,
    review_service: ReviewService,
    comment_service: CommentService,
) -> SubmissionResult:
    pr_number = context.pr_number
    logger.info(f"--- Starting review for PR #{pr_number} in {context.repo_full_name} ---")

    check_run_id = None
    check_run_error = None
    try:
        check_run_id = (await github_service.create_check_run(context.head_sha)).id
        logger.info(f"Created check run with ID: {check_run_id}")
    except httpx.HTTPError as e:
        logger.warning(f"Could not create check run, continuing without it: {e}")
        check_run_error = e

    try:
        pr_files = await github_service.list_pr_files(pr_number)
        files = select_reviewable_files(pr_files, config)
        if files and config.incremental_review:
            files = await filter_files_changed_since_last_review(
                github_service, pr_number, context.head_sha, files
            )
        logger.info(f"Found {len(pr_files)} changed files, {len(files)} to review.")

        results: List[FileReviewResult] = []
        for file in files:
            logger.info(f"Reviewing file: {file.filename}")
            enhanced = await load_enhanced_file(github_service, file, context.head_sha)
            results.append(await review_service.review_file(enhanced))

        submission = await comment_service.submit(pr_number, results, review_service.usage)
    except Exception as e:
        logger.error(f"Code review failed: {e}")
        try:
            await _complete_check_run(github_service, check_run_id, "failure", f"Code review failed: {e}")
        except httpx.HTTPError as check_error:
            logger.warning(f"Could not mark check run as failed: {check_error}")
        raise

    if files:
        summary = f"Completed AI code review with {submission.submitted_comments} comments."
    else:
        summary = "No files to review based on configuration filters."
    await _complete_check_run(github_service, check_run_id, "success", summary)

    usage = review_service.usage
    logger.info(
        f"Review completed for {context.repo_full_name}#{pr_number}: "
        f"{submission.submitted_comments} comments, "
        f"tokens in={usage.input_tokens} out={usage.output_tokens} total={usage.total_tokens}"
    )

    if check_run_error is not None:
        raise check_run_error
    return submission
