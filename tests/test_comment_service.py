import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path

import yaml

from conftest import FakeGitHub
from schemas.review import (
    FileReviewResult,
    FindingOutcome,
    FindingState,
    PositionedComment,
    ReviewFinding,
    Severity,
    TokenUsage,
)
from services.comment_service import (
    CommentService,
    artifact_filename,
    build_artifact,
    build_review_comments,
    format_summary,
    utc_timestamp,
    write_workflow_outputs,
)
from services.github_service import GitHubService

REPO = "octo/widgets"


def outcome(path, line, accepted=True, severity=Severity.MEDIUM):
    return FindingOutcome(
        finding=ReviewFinding(
            file_path=path, start_line=line, end_line=line, comment_body=f"issue at {line}",
            severity=severity,
        ),
        state=FindingState.ACCEPTED if accepted else FindingState.REJECTED,
        position=line + 1 if accepted else None,
    )


def sample_results():
    return [
        FileReviewResult(file_path="a.py", outcomes=[outcome("a.py", 2), outcome("a.py", 9, False)]),
        FileReviewResult(file_path="b.py", outcomes=[outcome("b.py", 4, severity=Severity.HIGH)]),
    ]


def make_service(fake, **kwargs):
    github = GitHubService(token="t", repo_full_name=REPO, transport=fake.transport())
    return CommentService(github, head_sha="abc123", **kwargs)


def read_outputs(path):
    values = {}
    lines = path.read_text(encoding="utf-8").splitlines()
    i = 0
    while i < len(lines):
        name, delimiter = lines[i].split("<<", 1)
        end = lines.index(delimiter, i + 1)
        values[name] = "\n".join(lines[i + 1 : end])
        i = end + 1
    return values


def test_artifact_filename_replaces_colons_and_periods():
    timestamp = utc_timestamp(datetime(2026, 10, 18, 9, 30, 15, 250000, tzinfo=timezone.utc))
    assert timestamp == "2026-10-18T09:30:15.250Z"
    assert artifact_filename(12, timestamp) == "review-results-pr12-2026-10-18T09-30-15-250Z.json"


def test_artifact_contains_all_valid_findings():
    artifact = build_artifact(sample_results())
    dumped = [entry.model_dump(mode="json", by_alias=True) for entry in artifact]
    assert dumped == [
        {"comment": "issue at 2", "filePath": "a.py", "line": 2, "position": 3, "severityLevel": "medium"},
        {"comment": "issue at 9", "filePath": "a.py", "line": 9, "position": None, "severityLevel": "medium"},
        {"comment": "issue at 4", "filePath": "b.py", "line": 4, "position": 5, "severityLevel": "high"},
    ]


def test_review_comments_grouped_by_file_without_dedup():
    comments = [
        PositionedComment(file_path="a.py", line=2, diff_position=3, body="one"),
        PositionedComment(file_path="b.py", line=1, diff_position=1, body="two"),
        PositionedComment(file_path="a.py", line=2, diff_position=3, body="three"),
    ]
    assert build_review_comments(comments) == [
        {"path": "a.py", "position": 3, "body": "one"},
        {"path": "a.py", "position": 3, "body": "three"},
        {"path": "b.py", "position": 1, "body": "two"},
    ]


def test_write_workflow_outputs_appends_delimited_values(tmp_path):
    output = tmp_path / "github_output"
    output.write_text("existing<<EOF\nvalue\nEOF\n", encoding="utf-8")
    write_workflow_outputs(str(output), {"comments": "[]", "comment-count": "0"})
    values = read_outputs(output)
    assert values == {"existing": "value", "comments": "[]", "comment-count": "0"}


def test_write_workflow_outputs_without_path_is_noop():
    write_workflow_outputs(None, {"comments": "[]"})


def test_summary_lists_counts_and_tokens():
    summary = format_summary(3, TokenUsage(input_tokens=1200, output_tokens=50), "2026-10-18T00:00:00.000Z")
    assert "Review comments: **3**" in summary
    assert "Input tokens: 1,200" in summary
    assert "Output tokens: 50" in summary
    assert "Total tokens: 1,250" in summary
    assert "2026-10-18T00:00:00.000Z" in summary


def test_submit_posts_review_outputs_and_summary(tmp_path):
    fake = FakeGitHub(
        {
            ("POST", f"/repos/{REPO}/pulls/7/reviews"): (200, {"id": 42}),
            ("POST", f"/repos/{REPO}/issues/7/comments"): (201, {"id": 1}),
        }
    )
    output = tmp_path / "out"
    service = make_service(fake, output_path=str(output), results_dir=str(tmp_path / "results"))

    result = asyncio.run(
        service.submit(7, sample_results(), TokenUsage(input_tokens=10, output_tokens=5))
    )

    assert result.submitted_comments == 2
    assert result.review_id == 42
    assert result.summary_posted
    review = json.loads(fake.sent("POST", f"/repos/{REPO}/pulls/7/reviews")[0].content)
    assert [c["path"] for c in review["comments"]] == ["a.py", "b.py"]
    assert review["commit_id"] == "abc123"

    outputs = read_outputs(output)
    assert len(json.loads(outputs["comments"])) == 3
    assert outputs["comment-count"] == "2"
    assert (outputs["input-tokens"], outputs["output-tokens"]) == ("10", "5")
    assert outputs["total-tokens"] == "15"

    files = list((tmp_path / "results").iterdir())
    assert len(files) == 1
    assert files[0].name.startswith("review-results-pr7-")
    assert ":" not in files[0].name
    assert json.loads(files[0].read_text(encoding="utf-8")) == json.loads(outputs["comments"])


def test_summary_failure_does_not_fail_submission():
    fake = FakeGitHub(
        {
            ("POST", f"/repos/{REPO}/pulls/7/reviews"): (200, {"id": 42}),
            ("POST", f"/repos/{REPO}/issues/7/comments"): (403, {"message": "Forbidden"}),
        }
    )
    result = asyncio.run(make_service(fake).submit(7, sample_results(), TokenUsage()))
    assert result.submitted_comments == 2
    assert not result.summary_posted


def test_no_accepted_comments_skips_review_call():
    fake = FakeGitHub({("POST", f"/repos/{REPO}/issues/7/comments"): (201, {"id": 1})})
    results = [FileReviewResult(file_path="a.py", outcomes=[outcome("a.py", 9, False)])]

    result = asyncio.run(make_service(fake).submit(7, results, TokenUsage()))

    assert result.submitted_comments == 0
    assert fake.sent("POST", f"/repos/{REPO}/pulls/7/reviews") == []
    assert len(result.artifact) == 1


def test_unwritable_results_dir_is_best_effort(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("x", encoding="utf-8")
    fake = FakeGitHub(
        {
            ("POST", f"/repos/{REPO}/pulls/7/reviews"): (200, {"id": 42}),
            ("POST", f"/repos/{REPO}/issues/7/comments"): (201, {"id": 1}),
        }
    )
    service = make_service(fake, results_dir=str(blocker / "nested"))

    result = asyncio.run(service.submit(7, sample_results(), TokenUsage()))

    assert result.artifact_path is None
    assert result.submitted_comments == 2


def test_every_written_output_is_declared_by_the_action(tmp_path):
    action_file = Path(__file__).resolve().parents[1] / "action.yml"
    action = yaml.safe_load(action_file.read_text(encoding="utf-8"))
    output = tmp_path / "out"
    fake = FakeGitHub({("POST", f"/repos/{REPO}/issues/7/comments"): (201, {"id": 1})})

    asyncio.run(make_service(fake, output_path=str(output)).submit(7, [], TokenUsage()))

    assert set(read_outputs(output)) == set(action["outputs"])
