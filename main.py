import asyncio
import logging
import os
import sys

import httpx

from core.config import get_settings, load_pull_request_context
from core.exceptions import ReviewActionError
from core.log import setup_logging
from core.review_config import load_review_config
from runner import orchestrate_review
from services.comment_service import CommentService
from services.github_service import GitHubService
from services.llm_service import ReviewModelClient, get_chat_model
from services.review_service import ReviewService

logger = logging.getLogger(__name__)


async def run() -> None:
    settings = get_settings()
    setup_logging(settings.DEBUG)

    config = load_review_config(settings.CONFIG_PATH)
    context = load_pull_request_context(settings)

    github_service = GitHubService(
        token=settings.GITHUB_TOKEN,
        repo_full_name=context.repo_full_name,
        api_url=settings.GITHUB_API_URL,
    )
    review_service = ReviewService(
        ReviewModelClient(get_chat_model(settings.GOOGLE_API_KEY, config)), config
    )
    comment_service = CommentService(
        github_service,
        head_sha=context.head_sha,
        output_path=settings.GITHUB_OUTPUT,
        results_dir=settings.RESULTS_DIR,
    )

    await orchestrate_review(
        context, config, github_service, review_service, comment_service
    )


def main() -> int:
    setup_logging(os.environ.get("DEBUG", "").lower() in ("1", "true"))
    try:
        asyncio.run(run())
    except ReviewActionError as e:
        logger.error(f"Action failed: {e}")
        return 1
    except httpx.HTTPStatusError as e:
        logger.error(
            f"Action failed: GitHub API returned {e.response.status_code} "
            f"for {e.request.method} {e.request.url}: {e.response.text}"
        )
        return 1
    except httpx.HTTPError as e:
        logger.error(f"Action failed: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
