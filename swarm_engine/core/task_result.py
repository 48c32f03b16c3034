"""
Task result extraction - turns a run's raw text and transcript into a TaskResult.

Artifacts are collected in first-seen order from the raw result text, explicit
image fields on messages, upload URLs inside message text and tool outputs.
Every URL is stored without its ``sandbox:`` prefix and deduplicated.
"""

import re
from typing import Iterable, List, Optional

from swarm_engine.models import Artifact, ArtifactType, Session, TaskResult

SANDBOX_PREFIX_RE = re.compile(r"^sandbox:")
SANDBOX_UPLOADS_RE = re.compile(r"sandbox:/api/uploads/")
UPLOAD_URL_RE = re.compile(r"(?:sandbox:)?/api/uploads/[^\s)\"'>\]]+", re.IGNORECASE)

IMAGE_EXT_RE = re.compile(r"\.(png|jpe?g|gif|webp|svg|bmp|ico)$", re.IGNORECASE)
VIDEO_EXT_RE = re.compile(r"\.(mp4|webm|mov|avi)$", re.IGNORECASE)
PDF_EXT_RE = re.compile(r"\.pdf$", re.IGNORECASE)


def classify_artifact(filename: str) -> ArtifactType:
    if IMAGE_EXT_RE.search(filename):
        return ArtifactType.IMAGE
    if VIDEO_EXT_RE.search(filename):
        return ArtifactType.VIDEO
    if PDF_EXT_RE.search(filename):
        return ArtifactType.PDF
    return ArtifactType.FILE


class _ArtifactCollector:
    def __init__(self):
        self._seen = set()
        self.artifacts: List[Artifact] = []

    def add(self, raw_url: str) -> None:
        url = SANDBOX_PREFIX_RE.sub("", raw_url.strip())
        if not url or url in self._seen:
            return
        self._seen.add(url)
        filename = url.rsplit("/", 1)[-1].split("?", 1)[0] or "file"
        self.artifacts.append(Artifact(url=url, type=classify_artifact(filename), filename=filename))

    def scan(self, text: Optional[str]) -> None:
        if not isinstance(text, str) or not text:
            return
        for match in UPLOAD_URL_RE.finditer(text):
            self.add(match.group(0))


def extract_task_result(
    session: Optional[Session],
    raw_result_text: Optional[str],
    since_time: Optional[int] = None,
) -> TaskResult:
    """
    Build a structured result for one run.

    Args:
        session: Execution session whose transcript is scanned (may be None)
        raw_result_text: Final text the run returned
        since_time: When given, only messages at or after this epoch-ms are scanned

    Returns:
        TaskResult with a sandbox-normalized summary and ordered artifacts
    """
    collector = _ArtifactCollector()
    collector.scan(raw_result_text)

    messages = session.messages if session is not None else []
    for message in messages:
        if since_time is not None and message.time and message.time < since_time:
            continue
        if message.image_url:
            collector.add(message.image_url)
        if message.image_path:
            basename = str(message.image_path).replace("\\", "/").rsplit("/", 1)[-1]
            if basename:
                collector.add(f"/api/uploads/{basename}")
        collector.scan(message.text)
        for event in message.tool_events:
            collector.scan(event.output)

    summary = raw_result_text.strip() if isinstance(raw_result_text, str) else ""
    summary = SANDBOX_UPLOADS_RE.sub("/api/uploads/", summary)

    return TaskResult(summary=summary, artifacts=collector.artifacts)


def _strip_inlined(summary: str, artifacts: Iterable[Artifact]) -> str:
    clean = summary
    for artifact in artifacts:
        url = re.escape(artifact.url)
        clean = re.sub(r"!\[[^\]]*\]\(" + url + r"\)", "", clean)
        clean = re.sub(r"\[[^\]]*\]\(" + url + r"\)", "", clean)
    return re.sub(r"\n{3,}", "\n\n", clean).strip()


def format_result_body(result: TaskResult) -> str:
    """Render a result as markdown: images and videos embedded, other files linked."""
    parts: List[str] = []
    if result.summary:
        clean = _strip_inlined(result.summary, result.artifacts)
        if clean:
            parts.append(clean)

    for artifact in result.artifacts:
        if artifact.type in (ArtifactType.IMAGE, ArtifactType.VIDEO):
            parts.append(f"![{artifact.filename}]({artifact.url})")
        else:
            parts.append(f"[{artifact.filename}]({artifact.url})")

    return "\n\n".join(parts)
