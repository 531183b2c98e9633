import json
import re
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.exceptions import ConfigurationError, PullRequestContextError
from schemas.github import PullRequestContext, PullRequestEvent


class Settings(BaseSettings):
    GITHUB_TOKEN: str = Field(
        ...,
        validation_alias=AliasChoices("INPUT_GITHUB-TOKEN", "GITHUB_TOKEN"),
        description="Token used for the GitHub REST API.",
    )
    GOOGLE_API_KEY: str = Field(
        ...,
        validation_alias=AliasChoices("INPUT_GOOGLE-API-KEY", "GOOGLE_API_KEY"),
        description="The API key for the Gemini model.",
    )

    GITHUB_REPOSITORY: str = Field("", description="owner/repo of the pull request.")
    GITHUB_EVENT_PATH: Optional[str] = Field(
        None, description="Path to the JSON payload of the triggering event."
    )
    GITHUB_REF: Optional[str] = Field(None, description="refs/pull/<n>/merge on PRs.")
    GITHUB_SHA: Optional[str] = Field(None, description="Commit the workflow runs on.")
    GITHUB_API_URL: str = Field(
        "https://api.github.com", description="Base URL of the GitHub REST API."
    )
    GITHUB_OUTPUT: Optional[str] = Field(
        None, description="File that receives workflow output values."
    )

    CONFIG_PATH: str = Field(
        ".github/code-review-config.yml",
        validation_alias=AliasChoices("INPUT_CONFIG-PATH", "CONFIG_PATH"),
        description="Location of the YAML review configuration.",
    )
    RESULTS_DIR: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("INPUT_RESULTS-DIR", "RESULTS_DIR"),
        description="Directory for the JSON results artifact; skipped when unset.",
    )
    DEBUG: bool = Field(
        False,
        validation_alias=AliasChoices("INPUT_DEBUG", "DEBUG"),
        description="Enable debug logging.",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


@lru_cache
def get_settings() -> Settings:
    try:
        return Settings()
    except ValidationError as e:
        missing = ", ".join(
            str(error["loc"][0]) for error in e.errors() if error.get("loc")
        )
        raise ConfigurationError(
            f"Invalid or missing settings: {missing or e}"
        ) from e


def load_pull_request_context(settings: Settings) -> PullRequestContext:
    """Resolve repository, PR number and head SHA from the workflow environment."""
    event = PullRequestEvent()
    if settings.GITHUB_EVENT_PATH and Path(settings.GITHUB_EVENT_PATH).is_file():
        try:
            payload = json.loads(
                Path(settings.GITHUB_EVENT_PATH).read_text(encoding="utf-8")
            )
            event = PullRequestEvent.model_validate(payload)
        except (OSError, ValueError) as e:
            raise ConfigurationError(
                f"Could not read event payload {settings.GITHUB_EVENT_PATH}: {e}"
            ) from e

    repo_full_name = settings.GITHUB_REPOSITORY
    if not repo_full_name and event.repository:
        repo_full_name = event.repository.full_name
    if not repo_full_name:
        raise ConfigurationError("GITHUB_REPOSITORY is not set.")

    pr_number = None
    head_sha = settings.GITHUB_SHA
    if event.pull_request:
        pr_number = event.pull_request.number
        if event.pull_request.head:
            head_sha = event.pull_request.head.sha
    elif settings.GITHUB_REF:
        match = re.match(r"^refs/pull/(\d+)/", settings.GITHUB_REF)
        if match:
            pr_number = int(match.group(1))

    if not pr_number:
        raise PullRequestContextError(
            "This action must be run in a pull request context."
        )
    if not head_sha:
        raise ConfigurationError("Could not determine the pull request head SHA.")

    return PullRequestContext(
        repo_full_name=repo_full_name, pr_number=pr_number, head_sha=head_sha
    )
