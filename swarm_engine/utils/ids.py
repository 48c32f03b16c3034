"""Identifier and timestamp helpers shared by the queue, graph tools and storage."""

import secrets
import time


def gen_id() -> str:
    """Short opaque id for tasks, comments and sessions."""
    return secrets.token_hex(4)


def now_ms() -> int:
    """Current wall-clock time as epoch milliseconds."""
    return int(time.time() * 1000)
