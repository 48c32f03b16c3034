"""
Task completion reports - durable markdown evidence per task.

The report is rewritten only when its content changes. The evidence summary
(changed files, commands, verification lines) feeds the completion validator.
"""

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

from swarm_engine.models import BoardTask
from swarm_engine.utils.logger import get_logger

logger = get_logger(__name__)

MAX_REPORT_BODY = 6000
MAX_EVIDENCE_LINES = 8

COMMAND_HINT = re.compile(
    r"\b(npm|pnpm|yarn|bun|node|npx|pytest|vitest|jest|playwright|go test|cargo test|deno test"
    r"|python|pip|uv|docker|git)\b",
    re.IGNORECASE,
)
FILE_HINT = re.compile(
    r"\b([\w./-]+\.(ts|tsx|js|jsx|mjs|cjs|json|md|css|scss|html|yml|yaml|sh|py|go|rs|java|kt"
    r"|swift|rb|php|sql))\b",
    re.IGNORECASE,
)
VERIFICATION_HINT = re.compile(
    r"\b(test|tests|passed|failed|failing|lint|typecheck|build|verified|verification)\b",
    re.IGNORECASE,
)


@dataclass
class TaskReportEvidence:
    changed_files: List[str] = field(default_factory=list)
    commands_run: List[str] = field(default_factory=list)
    verification: List[str] = field(default_factory=list)

    @property
    def has_evidence(self) -> bool:
        return bool(self.changed_files or self.commands_run or self.verification)

    def to_dict(self) -> dict:
        return {
            "changed_files": list(self.changed_files),
            "commands_run": list(self.commands_run),
            "verification": list(self.verification),
            "has_evidence": self.has_evidence,
        }


@dataclass
class TaskReportArtifact:
    absolute_path: str
    relative_path: str
    evidence: TaskReportEvidence


def _normalize_line(value: str) -> str:
    return re.sub(r"\s+", " ", value).strip()


def _to_lines(value: str) -> List[str]:
    lines = (_normalize_line(re.sub(r"^[-*]\s+", "", line)) for line in re.split(r"\r?\n", value))
    return [line for line in lines if line]


def _unique_top(values: List[str], limit: int = MAX_EVIDENCE_LINES) -> List[str]:
    out: List[str] = []
    seen = set()
    for value in values:
        key = value.lower()
        if key in seen:
            continue
        seen.add(key)
        out.append(value)
        if len(out) >= limit:
            break
    return out


def extract_evidence(result: str) -> TaskReportEvidence:
    lines = _to_lines(result or "")
    return TaskReportEvidence(
        changed_files=_unique_top([line for line in lines if FILE_HINT.search(line)]),
        commands_run=_unique_top([line for line in lines if COMMAND_HINT.search(line)]),
        verification=_unique_top([line for line in lines if VERIFICATION_HINT.search(line)]),
    )


def _bullets(title: str, values: List[str]) -> List[str]:
    if not values:
        return [f"## {title}", "- Not provided", ""]
    return [f"## {title}"] + [f"- {value}" for value in values] + [""]


def render_task_report(task: BoardTask, evidence: TaskReportEvidence) -> str:
    title = task.title.strip() if task.title and task.title.strip() else "Untitled Task"
    description = (task.description or "").strip()
    result = (task.result or "").strip()
    status = task.status.value if task.status else "unknown"

    lines = [
        f"# Task {task.id}: {title}",
        "",
        f"- Status: {status}",
        f"- Agent: {task.agent_id or 'unassigned'}",
        f"- Session: {task.session_id or 'none'}",
        "",
    ]
    if description:
        lines += ["## Description", description, ""]
    lines += ["## Result Summary", result[:MAX_REPORT_BODY] if result else "No result summary provided.", ""]
    lines += _bullets("Changed Files", evidence.changed_files)
    lines += _bullets("Commands Run", evidence.commands_run)
    lines += _bullets("Verification", evidence.verification)
    return "\n".join(lines).strip() + "\n"


def ensure_task_completion_report(
    task: BoardTask,
    reports_dir: Union[str, Path],
) -> Optional[TaskReportArtifact]:
    """
    Write (or leave untouched when unchanged) the markdown report for a task.

    Args:
        task: Task whose result is summarised
        reports_dir: Folder receiving ``<task id>.md``

    Returns:
        TaskReportArtifact, or None when the task has no id
    """
    task_id = (task.id or "").strip()
    if not task_id:
        return None

    evidence = extract_evidence(task.result or "")
    content = render_task_report(task, evidence)

    folder = Path(reports_dir)
    report_path = folder / f"{task_id}.md"
    folder.mkdir(parents=True, exist_ok=True)

    current = report_path.read_text(encoding="utf-8", errors="replace") if report_path.exists() else None
    if current != content:
        report_path.write_text(content, encoding="utf-8")
        logger.debug(f"Wrote completion report for task {task_id}")

    try:
        relative = os.path.relpath(report_path, os.getcwd())
    except ValueError:
        relative = str(report_path)

    return TaskReportArtifact(
        absolute_path=str(report_path.resolve()),
        relative_path=relative,
        evidence=evidence,
    )
