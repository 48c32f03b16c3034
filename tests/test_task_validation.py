"""
Tests for the completion validator, the result extractor and completion reports.
"""

import unittest

from swarm_engine.core.task_reports import ensure_task_completion_report, extract_evidence
from swarm_engine.core.task_result import extract_task_result, format_result_body
from swarm_engine.core.task_validation import (
    format_validation_failure,
    is_implementation_task,
    validate_task_completion,
)
from swarm_engine.models import (
    ArtifactType,
    BoardTask,
    Session,
    SessionMessage,
    TaskStatus,
    ToolEvent,
)


def _task(title="Say hello", result=None, description="", error=None):
    return BoardTask(
        id="t1", title=title, description=description, agent_id="worker",
        status=TaskStatus.RUNNING, result=result, error=error,
    )


class TestCompletionValidator(unittest.TestCase):
    """Tests for validate_task_completion."""

    def test_friendly_reply_passes_for_non_implementation_task(self):
        validation = validate_task_completion(_task(result="Hello! How can I help you today?"), now=1)
        self.assertTrue(validation.ok)
        self.assertEqual(validation.reasons, [])
        self.assertEqual(validation.checked_at, 1)

    def test_short_result_fails_for_implementation_task(self):
        validation = validate_task_completion(_task(title="Fix retry bug", result="Patched queue retry bug."))
        self.assertFalse(validation.ok)
        self.assertIn("Result summary is too short (24 chars).", validation.reasons)

    def test_all_reasons_are_accumulated(self):
        validation = validate_task_completion(_task(title="Fix login", result="", error="boom"))
        self.assertEqual(validation.reasons[:2], [
            "Task has a non-empty error field.",
            "Result summary is empty.",
        ])
        self.assertEqual(len(validation.reasons), 3)

    def test_placeholder_language_rejected(self):
        validation = validate_task_completion(_task(result="The plan covers the next three steps in detail."))
        self.assertIn(
            "Result contains placeholder/planning language instead of completion evidence.",
            validation.reasons,
        )

    def test_implementation_needs_execution_evidence(self):
        result = "I looked into the login issue carefully and it seems resolved now, all good."
        validation = validate_task_completion(_task(title="Fix login", result=result))
        self.assertEqual(
            validation.reasons,
            ["Implementation task is missing concrete execution evidence in result."],
        )

    def test_implementation_with_evidence_passes(self):
        result = "Updated src/auth.py to refresh tokens and verified with pytest: all tests passed."
        self.assertTrue(validate_task_completion(_task(title="Fix login", result=result)).ok)

    def test_screenshot_delivery_requires_artifact(self):
        task = _task(title="Capture a screenshot of the dashboard and send it", result="The dashboard looks fine today.")
        validation = validate_task_completion(task)
        self.assertFalse(validation.ok)
        self.assertTrue(any("Screenshot delivery" in r for r in validation.reasons))

        task.result = "Dashboard captured: /api/uploads/dash.png"
        self.assertTrue(validate_task_completion(task).ok)

    def test_deterministic_for_fixed_clock(self):
        task = _task(title="Fix login", result="short")
        self.assertEqual(
            validate_task_completion(task, now=5).to_dict(),
            validate_task_completion(task, now=5).to_dict(),
        )

    def test_implementation_hint(self):
        self.assertTrue(is_implementation_task("Integrate billing", ""))
        self.assertFalse(is_implementation_task("Summarize notes", "weekly digest"))

    def test_format_failure(self):
        self.assertEqual(format_validation_failure(["A.", "B."]), "Completion validation failed: A. B.")


class TestResultExtraction(unittest.TestCase):
    """Tests for extract_task_result and format_result_body."""

    def test_sandbox_prefix_stripped(self):
        result = extract_task_result(None, "Report ready at sandbox:/api/uploads/1234-report.png")
        self.assertEqual(len(result.artifacts), 1)
        artifact = result.artifacts[0]
        self.assertEqual(artifact.type, ArtifactType.IMAGE)
        self.assertEqual(artifact.filename, "1234-report.png")
        self.assertEqual(artifact.url, "/api/uploads/1234-report.png")
        self.assertNotIn("sandbox:", result.summary)

    def test_transcript_scan_is_ordered_and_deduplicated(self):
        session = Session(id="s1", messages=[
            SessionMessage(role="user", text="old /api/uploads/old.pdf", time=10),
            SessionMessage(role="assistant", text="see /api/uploads/a.mp4", time=100, image_url="/api/uploads/b.png"),
            SessionMessage(
                role="assistant", text="again /api/uploads/a.mp4", time=110,
                image_path="/tmp/uploads/c.jpg",
                tool_events=[ToolEvent(name="send_file", output="saved /api/uploads/d.zip")],
            ),
        ])
        result = extract_task_result(session, "Done", since_time=50)
        self.assertEqual(
            [a.filename for a in result.artifacts],
            ["b.png", "a.mp4", "c.jpg", "d.zip"],
        )
        self.assertEqual(
            [a.type for a in result.artifacts],
            [ArtifactType.IMAGE, ArtifactType.VIDEO, ArtifactType.IMAGE, ArtifactType.FILE],
        )

    def test_rerun_is_idempotent(self):
        session = Session(id="s1", messages=[SessionMessage(role="assistant", text="/api/uploads/x.pdf", time=1)])
        first = extract_task_result(session, "Summary")
        second = extract_task_result(session, "Summary")
        self.assertEqual(first.model_dump(), second.model_dump())

    def test_format_strips_inlined_references(self):
        result = extract_task_result(None, "Chart: ![chart](/api/uploads/chart.png)\nSee [doc](/api/uploads/doc.pdf)")
        body = format_result_body(result)
        self.assertEqual(body.count("/api/uploads/chart.png"), 1)
        self.assertIn("![chart.png](/api/uploads/chart.png)", body)
        self.assertIn("[doc.pdf](/api/uploads/doc.pdf)", body)
        self.assertNotIn("![doc.pdf]", body)


class TestCompletionReport:
    """Tests for ensure_task_completion_report (pytest style, uses tmp_path)."""

    def test_report_written_with_evidence(self, tmp_path):
        task = _task(title="Fix login", result="- Updated src/auth.py\n- Ran pytest -q\n- All tests passed")
        report = ensure_task_completion_report(task, tmp_path)

        content = (tmp_path / "t1.md").read_text(encoding="utf-8")
        assert content.startswith("# Task t1: Fix login")
        assert "## Changed Files" in content
        assert report.evidence.has_evidence
        assert "Updated src/auth.py" in report.evidence.changed_files
        assert "Ran pytest -q" in report.evidence.commands_run

    def test_unchanged_report_not_rewritten(self, tmp_path):
        task = _task(result="Nothing to see")
        ensure_task_completion_report(task, tmp_path)
        path = tmp_path / "t1.md"
        before = path.stat().st_mtime_ns
        ensure_task_completion_report(task, tmp_path)
        assert path.stat().st_mtime_ns == before

    def test_report_evidence_satisfies_validator(self, tmp_path):
        task = _task(title="Fix login", result="Login flow patched; npm test run and everything passed.")
        report = ensure_task_completion_report(task, tmp_path)
        assert validate_task_completion(task, report).ok

    def test_empty_evidence(self):
        assert not extract_evidence("Nothing happened here").has_evidence


if __name__ == "__main__":
    unittest.main()
