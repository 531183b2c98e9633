"""
Review configuration: which files to skip and which prompts apply to which files.
"""

import fnmatch
import logging
import re
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

BRACE_SET_RE = re.compile(r"\{([^{}]*,[^{}]*)\}")


def clean_pattern(pattern: str) -> str:
    """Trim a glob and drop a YAML list dash left in by a badly indented file."""
    pattern = pattern.strip()
    if pattern.startswith("- "):
        pattern = pattern[2:].strip()
    return pattern.strip("'\"")


def expand_braces(pattern: str) -> List[str]:
    """``src/*.{ts,tsx}`` -> ``["src/*.ts", "src/*.tsx"]``; nested sets expand too."""
    match = BRACE_SET_RE.search(pattern)
    if not match:
        return [pattern]
    head, tail = pattern[: match.start()], pattern[match.end() :]
    expanded: List[str] = []
    for option in match.group(1).split(","):
        expanded.extend(expand_braces(f"{head}{option}{tail}"))
    return list(dict.fromkeys(expanded))


def _fnmatch_globstar(filename: str, pattern: str) -> bool:
    if fnmatch.fnmatchcase(filename, pattern):
        return True
    while pattern.startswith("**/"):
        pattern = pattern[3:]
        if fnmatch.fnmatchcase(filename, pattern):
            return True
    return False


def matches_glob(filename: str, pattern: str) -> bool:
    """fnmatch with brace sets, where ``*`` may span directories and ``**/`` may match none."""
    pattern = clean_pattern(pattern)
    if not pattern:
        return False
    return any(_fnmatch_globstar(filename, option) for option in expand_braces(pattern))


class ReviewRule(BaseModel):
    include: List[str] = Field(..., description="Glob patterns the rule applies to.")
    prompt: str = Field(..., description="Review focus sent to the model.")

    @field_validator("include", mode="before")
    @classmethod
    def _wrap_single_pattern(cls, value):
        return [value] if isinstance(value, str) else value

    def matches(self, filename: str) -> bool:
        return any(matches_glob(filename, pattern) for pattern in self.include)


class ReviewConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    exclude_files: List[str] = Field(default_factory=list, alias="excludeFiles")
    rules: List[ReviewRule] = Field(default_factory=list)
    model: str = "gemini-2.0-flash"
    temperature: float = 0.3
    max_tokens: int = Field(4096, alias="maxTokens", gt=0)
    comment_threshold: int = Field(50, alias="commentThreshold", ge=0, le=100)
    incremental_review: bool = Field(False, alias="incrementalReview")

    @field_validator("exclude_files", mode="before")
    @classmethod
    def _clean_patterns(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            value = [value]
        return [clean_pattern(str(pattern)) for pattern in value if pattern]

    @field_validator("rules", mode="before")
    @classmethod
    def _none_to_empty(cls, value):
        return [] if value is None else value

    def is_excluded(self, filename: str) -> bool:
        return any(matches_glob(filename, pattern) for pattern in self.exclude_files)

    def find_matching_rules(self, filename: str) -> List[ReviewRule]:
        """All rules that apply to ``filename``, in configuration order."""
        return [rule for rule in self.rules if rule.matches(filename)]


DEFAULT_CONFIG = ReviewConfig(
    exclude_files=[
        "**/node_modules/**",
        "**/dist/**",
        "**/build/**",
        "**/*.min.js",
        "**/package-lock.json",
        "**/yarn.lock",
        "**/poetry.lock",
    ],
    rules=[
        ReviewRule(
            include=["**/*.py"],
            prompt=(
                "Review these Python code CHANGES focusing on proper exception handling, "
                "Pythonic approaches and security issues such as injection or unsafe eval."
            ),
        ),
        ReviewRule(
            include=["**/*.ts", "**/*.tsx"],
            prompt=(
                "Review these TypeScript code CHANGES focusing on type safety, "
                "null/undefined handling and correct interface usage."
            ),
        ),
        ReviewRule(
            include=["**/*.js", "**/*.jsx"],
            prompt=(
                "Review these JavaScript code CHANGES focusing on runtime errors, "
                "async/await usage and error handling."
            ),
        ),
    ],
)

GENERIC_PROMPT = (
    "Review these code CHANGES for bugs, edge cases, security concerns, "
    "error handling and maintainability."
)


def merge_with_defaults(
    user_config: ReviewConfig, defaults: ReviewConfig = DEFAULT_CONFIG
) -> ReviewConfig:
    user_includes = [frozenset(rule.include) for rule in user_config.rules]
    rules = list(user_config.rules) + [
        rule for rule in defaults.rules if frozenset(rule.include) not in user_includes
    ]

    exclude_files = list(dict.fromkeys(user_config.exclude_files))
    exclude_files += [
        pattern for pattern in defaults.exclude_files if pattern not in exclude_files
    ]

    return user_config.model_copy(
        update={"rules": rules, "exclude_files": exclude_files}
    )


def load_review_config(path: Optional[str]) -> ReviewConfig:
    if not path or not Path(path).is_file():
        logger.info(f"Config file not found at {path}, using default configuration.")
        return DEFAULT_CONFIG.model_copy(deep=True)

    try:
        raw = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Could not parse config file {path}: {e}") from e

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigurationError(
            f"Config file {path} must contain a mapping, got {type(raw).__name__}"
        )

    try:
        user_config = ReviewConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid config file {path}: {e}") from e

    config = merge_with_defaults(user_config)
    logger.info(
        f"Loaded {path}: {len(config.rules)} rules, "
        f"{len(config.exclude_files)} exclude patterns"
    )
    return config
