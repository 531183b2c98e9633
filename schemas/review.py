from enum import Enum
from typing import Any, List, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictStr,
    computed_field,
    field_validator,
    model_validator,
)

from utils.diff_parser import PositionKind


class Severity(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class FindingState(str, Enum):
    PENDING = "pending"
    PROMPTED = "prompted"
    PARSED = "parsed"
    VALIDATED = "validated"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class ModelComment(BaseModel):
    """One entry of the ``comments`` array the model is asked to return."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    start_line: int = Field(
        alias="startLine",
        description="First line of the issue, using the line numbers shown in the changed content",
    )
    end_line: int = Field(
        alias="endLine",
        description="Last line of the issue; equal to startLine for single-line issues",
    )
    comment: StrictStr = Field(
        description="Concise feedback with a suggested fix (1-3 sentences)"
    )
    severity: Optional[str] = Field(
        default=None, description="One of 'high', 'medium' or 'low'"
    )

    @field_validator("start_line", "end_line", mode="before")
    @classmethod
    def _require_number(cls, value: Any) -> Any:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"line must be a number, got {type(value).__name__}")
        if isinstance(value, float) and not value.is_integer():
            raise ValueError(f"line must be a whole number, got {value}")
        return int(value)

    @field_validator("start_line", "end_line")
    @classmethod
    def _require_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError(f"line must be positive, got {value}")
        return value

    @field_validator("comment")
    @classmethod
    def _require_text(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("comment must not be empty")
        return value.strip()

    @field_validator("severity", mode="before")
    @classmethod
    def _ignore_non_string_severity(cls, value: Any) -> Any:
        return value if isinstance(value, str) else None

    @model_validator(mode="after")
    def _check_range(self) -> "ModelComment":
        if self.start_line > self.end_line:
            raise ValueError(
                f"startLine {self.start_line} is after endLine {self.end_line}"
            )
        return self


class ModelReview(BaseModel):
    comments: List[ModelComment] = Field(
        default_factory=list,
        description="Issues found in the changed lines; empty when there is nothing to report",
    )


class ReviewFinding(BaseModel):
    file_path: str
    start_line: int = Field(gt=0)
    end_line: int = Field(gt=0)
    comment_body: str = Field(min_length=1)
    severity: Severity = Severity.MEDIUM
    confidence: int = 100


class PositionedComment(BaseModel):
    file_path: str
    line: int
    diff_position: int
    body: str
    position_kind: PositionKind = PositionKind.EXACT

    def to_api(self) -> dict:
        return {"path": self.file_path, "position": self.diff_position, "body": self.body}


class RejectedCandidate(BaseModel):
    file_path: str
    candidate: Any = None
    reason: str
    state: FindingState = FindingState.REJECTED


class FindingOutcome(BaseModel):
    """Terminal state of one validated finding."""

    finding: ReviewFinding
    state: FindingState
    position: Optional[int] = None
    position_kind: Optional[PositionKind] = None
    reason: Optional[str] = None

    @property
    def accepted(self) -> bool:
        return self.state is FindingState.ACCEPTED


class FileReviewResult(BaseModel):
    file_path: str
    outcomes: List[FindingOutcome] = Field(default_factory=list)
    rejected: List[RejectedCandidate] = Field(default_factory=list)
    error: Optional[str] = None

    @property
    def comments(self) -> List[PositionedComment]:
        return [
            PositionedComment(
                file_path=outcome.finding.file_path,
                line=outcome.finding.start_line,
                diff_position=outcome.position,
                body=format_comment_body(outcome.finding),
                position_kind=outcome.position_kind or PositionKind.EXACT,
            )
            for outcome in self.outcomes
            if outcome.accepted
        ]


class ArtifactEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    comment: str
    file_path: str = Field(alias="filePath")
    line: int
    position: Optional[int] = None
    severity_level: Severity = Field(alias="severityLevel")


class TokenUsage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0

    @computed_field
    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def add(self, other: "TokenUsage") -> None:
        self.input_tokens += other.input_tokens
        self.output_tokens += other.output_tokens


class SubmissionResult(BaseModel):
    submitted_comments: int = 0
    review_id: Optional[int] = None
    artifact: List[ArtifactEntry] = Field(default_factory=list)
    artifact_path: Optional[str] = None
    summary_posted: bool = False


SEVERITY_BADGES = {
    Severity.HIGH: "🔴 **High**",
    Severity.MEDIUM: "🟠 **Medium**",
    Severity.LOW: "🟡 **Low**",
}

REVIEW_MARKER = "<!-- inline-review-action -->"


def format_comment_body(finding: ReviewFinding) -> str:
    return f"{SEVERITY_BADGES[finding.severity]}: {finding.comment_body}\n\n{REVIEW_MARKER}"
