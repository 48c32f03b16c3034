"""
Completion validator - decides whether a task's result shows genuine completion.

The pattern tables below are tunable heuristics. Every failing check adds a
reason; nothing short-circuits, so a reviewer sees all gaps at once.
"""

import re
from typing import Iterable, List, Optional, Pattern

from swarm_engine.models import BoardTask, TaskValidation
from swarm_engine.utils.ids import now_ms

from .task_reports import TaskReportArtifact

MIN_RESULT_CHARS = 40
MIN_RESULT_CHARS_LOOSE = 12

WEAK_RESULT_PATTERNS = (
    re.compile(r"what can i help you with", re.IGNORECASE),
    re.compile(r"waiting for approval", re.IGNORECASE),
    re.compile(r"now let me write", re.IGNORECASE),
    re.compile(r"what'?s the play", re.IGNORECASE),
    re.compile(r"\bthe plan covers\b", re.IGNORECASE),
    re.compile(r"now update the agent", re.IGNORECASE),
    re.compile(r"\bzero typescript errors\b", re.IGNORECASE),
)

IMPLEMENTATION_HINT = re.compile(
    r"\b(add|build|create|fix|implement|integrat\w*|refactor|update|write)\b", re.IGNORECASE
)
EXECUTION_EVIDENCE = re.compile(
    r"\b(changed|updated|added|modified|files?|commands?|tests?|build|lint|typecheck|verified|report)\b",
    re.IGNORECASE,
)
SCREENSHOT_HINT = re.compile(r"\b(screenshot|screen shot|snapshot|capture)\b", re.IGNORECASE)
DELIVERY_HINT = re.compile(r"\b(send|deliver|return|share|upload|post|message)\b", re.IGNORECASE)
SCREENSHOT_ARTIFACT_HINT = re.compile(
    r"(?:sandbox:)?/api/uploads/[^\s)\]]+|https?://[^\s)\]]+\.(?:png|jpe?g|webp|gif|pdf)\b",
    re.IGNORECASE,
)
SENT_SCREENSHOT_HINT = re.compile(
    r"\b(sent|shared|uploaded|returned)\b[^.]*\b(screenshot|snapshot|image)\b", re.IGNORECASE
)


def _normalize_text(value) -> str:
    if not isinstance(value, str):
        return ""
    return re.sub(r"\s+", " ", value).strip()


def _any_match(patterns: Iterable[Pattern], *texts: str) -> bool:
    return any(p.search(t) for p in patterns for t in texts)


def is_implementation_task(title: str, description: str) -> bool:
    return _any_match((IMPLEMENTATION_HINT,), _normalize_text(title), _normalize_text(description))


def validate_task_completion(
    task: BoardTask,
    report: Optional[TaskReportArtifact] = None,
    now: Optional[int] = None,
) -> TaskValidation:
    """
    Check a task's result for completion evidence.

    Args:
        task: Task carrying ``result`` and ``error``
        report: Evidence report written for this task, if any
        now: Timestamp stamped into ``checked_at`` (defaults to the clock)

    Returns:
        TaskValidation with every failing reason
    """
    reasons: List[str] = []
    title = _normalize_text(task.title)
    description = _normalize_text(task.description)
    result = _normalize_text(task.result)
    error = _normalize_text(task.error)

    implementation_task = is_implementation_task(title, description)

    if error:
        reasons.append("Task has a non-empty error field.")

    if not result:
        reasons.append("Result summary is empty.")
    else:
        floor = MIN_RESULT_CHARS if implementation_task else MIN_RESULT_CHARS_LOOSE
        if len(result) < floor:
            reasons.append(f"Result summary is too short ({len(result)} chars).")
        if _any_match(WEAK_RESULT_PATTERNS, result):
            reasons.append("Result contains placeholder/planning language instead of completion evidence.")

    has_result_evidence = bool(EXECUTION_EVIDENCE.search(result))
    has_report_evidence = report is not None and report.evidence.has_evidence
    if implementation_task and not has_result_evidence and not has_report_evidence:
        if report is not None and report.relative_path:
            reasons.append(
                f"Implementation task is missing concrete execution evidence in result or {report.relative_path}."
            )
        else:
            reasons.append("Implementation task is missing concrete execution evidence in result.")

    screenshot_task = _any_match((SCREENSHOT_HINT,), title, description)
    if screenshot_task and _any_match((DELIVERY_HINT,), title, description):
        if not (SCREENSHOT_ARTIFACT_HINT.search(result) or SENT_SCREENSHOT_HINT.search(result)):
            reasons.append(
                "Screenshot delivery task is missing artifact evidence "
                "(upload link or explicit sent screenshot confirmation)."
            )

    return TaskValidation(ok=not reasons, reasons=reasons, checked_at=now if now is not None else now_ms())


def format_validation_failure(reasons: List[str]) -> str:
    return f"Completion validation failed: {' '.join(reasons)}"
