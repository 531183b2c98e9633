import json
import logging
import re
from typing import Any, List, Optional, Tuple

from langchain_core.messages import BaseMessage
from langchain_core.output_parsers import JsonOutputParser
from langchain_core.prompts import ChatPromptTemplate
from langchain_core.utils.json import parse_json_markdown
from pydantic import ValidationError

from core.review_config import GENERIC_PROMPT, ReviewConfig
from schemas.github import EnhancedFile, PullRequestFile
from schemas.review import (
    FileReviewResult,
    FindingOutcome,
    FindingState,
    ModelComment,
    ModelReview,
    RejectedCandidate,
    ReviewFinding,
    Severity,
    TokenUsage,
)
from services.llm_service import ReviewModelClient
from utils.diff_parser import DiffParser, PositionKind, extract_changed_content, is_changed_line

logger = logging.getLogger(__name__)

# The model reports no confidence of its own; every valid finding gets this one.
FIXED_CONFIDENCE = 100

SYSTEM_PROMPT = """
You are a senior developer with deep expertise in software architecture and business logic,
reviewing a pull request. Only comment on issues in CHANGED lines of code.

The changed content lists every added line prefixed with its line number in the new file
(e.g. "42: const x = 5;"). Use EXACTLY these line numbers for startLine and endLine.
DO NOT invent line numbers. DO NOT comment on lines that are not listed.

Set severity to:
- "high" for bugs, security concerns or significant business logic flaws
- "medium" for code quality issues, edge cases or architectural concerns
- "low" for minor improvements

Each comment must be concise (1-3 sentences) and include a suggested fix.
If there is nothing worth reporting, return an empty comments list.

Respond with raw JSON only, no markdown fences and no prose.
{format_instructions}
"""

USER_TEMPLATE = """{rule_prompts}

FOCUS ON THESE SPECIFIC CHANGES in file {filename}:

```
{changed_content}
```
{file_context}"""

FILE_CONTEXT_TEMPLATE = """
FULL FILE CONTEXT (for reference only, focus your review on the changes above):

```
{full_content}
```
"""

SEVERITY_MARKER_RE = re.compile(r"^\W*(high|medium|low)\b", re.IGNORECASE)


def get_review_prompt() -> ChatPromptTemplate:
    parser = JsonOutputParser(pydantic_object=ModelReview)
    return ChatPromptTemplate.from_messages(
        [("system", SYSTEM_PROMPT), ("human", USER_TEMPLATE)]
    ).partial(format_instructions=parser.get_format_instructions())


def build_enhanced_file(
    pr_file: PullRequestFile, full_content: Optional[str] = None
) -> EnhancedFile:
    change_set = extract_changed_content(pr_file.patch)
    return EnhancedFile(
        **pr_file.model_dump(),
        full_content=full_content,
        changed_content=change_set.changed_content,
        change_map=change_set.change_map,
    )


def parse_model_output(text: Optional[str]) -> List[Any]:
    """Turn raw model text into a list of candidate comments.

    Markdown fences are tolerated. Anything that is not a JSON object with a
    ``comments`` array, or a bare array, gives an empty list.
    """
    if not text or not text.strip():
        return []

    # strict parse; a reply truncated at the token limit is rejected, not completed
    try:
        data = parse_json_markdown(text, parser=json.loads)
    except json.JSONDecodeError as e:
        logger.warning(f"Model output is not valid JSON: {e}")
        return []

    if isinstance(data, dict):
        data = data.get("comments", [])
    if not isinstance(data, list):
        logger.warning(f"Model output has no comments array (got {type(data).__name__})")
        return []
    return data


def infer_severity(raw: Optional[str], comment: str) -> Severity:
    for candidate in (raw, comment):
        if not candidate:
            continue
        match = SEVERITY_MARKER_RE.match(candidate.strip())
        if match:
            return Severity(match.group(1).lower())
    return Severity.MEDIUM


def validate_candidates(
    file_path: str, candidates: List[Any]
) -> Tuple[List[ReviewFinding], List[RejectedCandidate]]:
    valid: List[ReviewFinding] = []
    rejected: List[RejectedCandidate] = []

    for i, candidate in enumerate(candidates):
        if not isinstance(candidate, dict):
            rejected.append(
                RejectedCandidate(
                    file_path=file_path,
                    candidate=candidate,
                    reason=f"comment {i + 1} is not an object",
                )
            )
            continue

        try:
            parsed = ModelComment.model_validate(candidate)
        except ValidationError as e:
            reason = "; ".join(
                f"{'.'.join(str(part) for part in error['loc']) or 'comment'}: {error['msg']}"
                for error in e.errors()
            )
            rejected.append(
                RejectedCandidate(file_path=file_path, candidate=candidate, reason=reason)
            )
            continue

        valid.append(
            ReviewFinding(
                file_path=file_path,
                start_line=parsed.start_line,
                end_line=parsed.end_line,
                comment_body=parsed.comment,
                severity=infer_severity(parsed.severity, parsed.comment),
                confidence=FIXED_CONFIDENCE,
            )
        )

    return valid, rejected


class ReviewService:
    """Runs the prompt → parse → validate → position pipeline for one file at a time."""

    def __init__(self, model_client: ReviewModelClient, config: ReviewConfig):
        self.model_client = model_client
        self.config = config
        self.usage = TokenUsage()
        self.prompt = get_review_prompt()

    def build_messages(self, file: EnhancedFile) -> List[BaseMessage]:
        rules = self.config.find_matching_rules(file.filename)
        if rules:
            rule_prompts = "\n\n".join(rule.prompt.strip() for rule in rules)
        else:
            logger.info(f"No matching review rule for {file.filename}, using generic prompt.")
            rule_prompts = GENERIC_PROMPT

        file_context = ""
        if file.full_content:
            file_context = FILE_CONTEXT_TEMPLATE.format(full_content=file.full_content)

        return self.prompt.format_messages(
            rule_prompts=rule_prompts,
            filename=file.filename,
            changed_content=file.changed_content or file.patch or "",
            file_context=file_context,
        )

    def resolve_finding(
        self, file: EnhancedFile, diff_parser: DiffParser, finding: ReviewFinding
    ) -> FindingOutcome:
        line = finding.start_line

        if not is_changed_line(file, line):
            available = diff_parser.get_commentable_lines()
            logger.info(
                f"  Line {line} in '{file.filename}' is NOT a changed line "
                f"(available: {available[:20]}{'...' if len(available) > 20 else ''})"
            )
            return FindingOutcome(
                finding=finding,
                state=FindingState.REJECTED,
                reason=f"line {line} was not changed in this pull request",
            )

        position = diff_parser.position_for_line(line)
        if position is None:
            logger.warning(
                f"Could not determine position for comment on {file.filename} line {line}. "
                "This comment will be skipped."
            )
            return FindingOutcome(
                finding=finding,
                state=FindingState.REJECTED,
                reason=f"no diff position for line {line}",
            )
        if position.kind is PositionKind.APPROXIMATE:
            logger.warning(
                f"Line {line} in {file.filename} is not in the diff; "
                f"placing comment at nearest hunk (position {position.position})"
            )

        if finding.confidence < self.config.comment_threshold:
            return FindingOutcome(
                finding=finding,
                state=FindingState.REJECTED,
                position=position.position,
                position_kind=position.kind,
                reason=(
                    f"confidence {finding.confidence} below threshold "
                    f"{self.config.comment_threshold}"
                ),
            )

        return FindingOutcome(
            finding=finding,
            state=FindingState.ACCEPTED,
            position=position.position,
            position_kind=position.kind,
        )

    async def review_file(self, file: EnhancedFile) -> FileReviewResult:
        result = FileReviewResult(file_path=file.filename)
        logger.debug(f"{file.filename}: {FindingState.PENDING.value}")

        try:
            completion = await self.model_client.complete(self.build_messages(file))
        except Exception as e:
            logger.error(f"Error reviewing file {file.filename}: {e}")
            result.error = str(e)
            return result

        self.usage.add(completion.usage)
        logger.debug(f"{file.filename}: {FindingState.PROMPTED.value}")

        candidates = parse_model_output(completion.content)
        logger.debug(
            f"{file.filename}: {FindingState.PARSED.value} ({len(candidates)} candidates)"
        )

        findings, result.rejected = validate_candidates(file.filename, candidates)
        for rejected in result.rejected:
            logger.info(f"  Skipping malformed comment on {file.filename}: {rejected.reason}")
        logger.debug(
            f"{file.filename}: {FindingState.VALIDATED.value} "
            f"({len(findings)} findings, {len(result.rejected)} rejected)"
        )

        diff_parser = DiffParser(file.patch)
        for finding in findings:
            outcome = self.resolve_finding(file, diff_parser, finding)
            result.outcomes.append(outcome)
            if outcome.accepted:
                logger.info(f"  Valid - {file.filename}:{finding.start_line}")

        accepted = sum(1 for outcome in result.outcomes if outcome.accepted)
        logger.info(
            f"Validation summary for {file.filename}: candidates={len(candidates)} "
            f"valid={len(findings)} accepted={accepted}"
        )
        return result
