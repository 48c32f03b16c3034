"""
Capability Policy - decides which tool families a session may use.

Pure functions over the session's requested tools and the global settings.
Per tool, the first matching rule wins:

1. safety blocklist (tool or any concrete sub-tool), even over an explicit allow
2. explicit allow override
3. explicit policy blocklist
4. blocked category
5. mode default (permissive / balanced / strict)

``resolve_concrete_tool_policy_block`` re-checks one concrete tool name at
dispatch time against an already computed session decision.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from swarm_engine.models import CapabilityPolicyMode

CATEGORIES = (
    "filesystem",
    "execution",
    "network",
    "browser",
    "memory",
    "delegation",
    "platform",
    "outbound",
)

STRICT_BLOCKED_CATEGORIES = frozenset({"execution", "delegation", "platform", "outbound", "filesystem"})


@dataclass(frozen=True)
class ToolDescriptor:
    categories: Tuple[str, ...]
    concrete_tools: Tuple[str, ...]
    destructive: bool = False


TOOL_DESCRIPTORS: Dict[str, ToolDescriptor] = {
    "shell": ToolDescriptor(("execution",), ("execute_command",)),
    "process": ToolDescriptor(("execution",), ("process_tool",)),
    "files": ToolDescriptor(("filesystem",), ("read_file", "write_file", "list_files", "send_file")),
    "read_file": ToolDescriptor(("filesystem",), ("read_file",)),
    "write_file": ToolDescriptor(("filesystem",), ("write_file",)),
    "list_files": ToolDescriptor(("filesystem",), ("list_files",)),
    "send_file": ToolDescriptor(("filesystem",), ("send_file",)),
    "copy_file": ToolDescriptor(("filesystem",), ("copy_file",)),
    "move_file": ToolDescriptor(("filesystem",), ("move_file",)),
    "edit_file": ToolDescriptor(("filesystem",), ("edit_file",)),
    "delete_file": ToolDescriptor(("filesystem",), ("delete_file",), destructive=True),
    "web_search": ToolDescriptor(("network",), ("web_search",)),
    "web_fetch": ToolDescriptor(("network",), ("web_fetch",)),
    "browser": ToolDescriptor(("browser", "network"), ("browser",)),
    "claude_code": ToolDescriptor(("delegation", "execution"), ("delegate_to_claude_code",)),
    "codex_cli": ToolDescriptor(("delegation", "execution"), ("delegate_to_codex_cli",)),
    "opencode_cli": ToolDescriptor(("delegation", "execution"), ("delegate_to_opencode_cli",)),
    "memory": ToolDescriptor(("memory",), ("memory_tool", "context_status", "context_summarize")),
    "manage_agents": ToolDescriptor(("platform",), ("manage_agents",)),
    "manage_tasks": ToolDescriptor(("platform",), ("manage_tasks",)),
    "manage_schedules": ToolDescriptor(("platform",), ("manage_schedules",)),
    "manage_skills": ToolDescriptor(("platform",), ("manage_skills",)),
    "manage_documents": ToolDescriptor(("platform",), ("manage_documents",)),
    "manage_webhooks": ToolDescriptor(("platform", "network"), ("manage_webhooks",)),
    "manage_connectors": ToolDescriptor(("platform", "outbound"), ("manage_connectors", "connector_message_tool")),
    "manage_sessions": ToolDescriptor(
        ("platform",), ("manage_sessions", "sessions_tool", "search_history_tool", "whoami_tool")
    ),
    "manage_secrets": ToolDescriptor(("platform",), ("manage_secrets",)),
}

CONCRETE_TOOL_TO_SESSION_TOOL: Dict[str, str] = {
    concrete: session_tool
    for session_tool, descriptor in TOOL_DESCRIPTORS.items()
    for concrete in descriptor.concrete_tools
}


@dataclass
class CapabilityPolicyBlock:
    tool: str
    reason: str
    source: str  # safety, policy

    def to_dict(self) -> dict:
        return {"tool": self.tool, "reason": self.reason, "source": self.source}


@dataclass
class SessionToolPolicyDecision:
    mode: CapabilityPolicyMode
    requested_tools: List[str] = field(default_factory=list)
    enabled_tools: List[str] = field(default_factory=list)
    blocked_tools: List[CapabilityPolicyBlock] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "mode": self.mode.value,
            "requested_tools": list(self.requested_tools),
            "enabled_tools": list(self.enabled_tools),
            "blocked_tools": [b.to_dict() for b in self.blocked_tools],
        }


@dataclass
class _PolicyConfig:
    mode: CapabilityPolicyMode
    safety_blocked: Set[str]
    policy_blocked: Set[str]
    policy_allowed: Set[str]
    blocked_categories: Set[str]


# Settings may come from the snake_case store or from older camelCase payloads
_SETTING_KEYS = {
    "mode": ("capability_policy_mode", "capabilityPolicyMode"),
    "safety": ("safety_blocked_tools", "safetyBlockedTools"),
    "blocked": ("capability_blocked_tools", "capabilityBlockedTools"),
    "allowed": ("capability_allowed_tools", "capabilityAllowedTools"),
    "categories": ("capability_blocked_categories", "capabilityBlockedCategories"),
}


def _normalize_name(value: Any) -> str:
    return value.strip().lower() if isinstance(value, str) else ""


def _normalize_mode(value: Any) -> CapabilityPolicyMode:
    mode = _normalize_name(value)
    if mode == "strict":
        return CapabilityPolicyMode.STRICT
    if mode == "balanced":
        return CapabilityPolicyMode.BALANCED
    return CapabilityPolicyMode.PERMISSIVE


def _normalize_list(value: Any) -> List[str]:
    if not isinstance(value, (list, tuple, set)):
        return []
    names: List[str] = []
    for entry in value:
        name = _normalize_name(entry)
        if name and name not in names:
            names.append(name)
    return names


def _setting(settings: Mapping[str, Any], key: str) -> Any:
    for name in _SETTING_KEYS[key]:
        if name in settings:
            return settings[name]
    return None


def _parse_policy_config(settings: Optional[Mapping[str, Any]]) -> _PolicyConfig:
    settings = settings if isinstance(settings, Mapping) else {}
    return _PolicyConfig(
        mode=_normalize_mode(_setting(settings, "mode")),
        safety_blocked=set(_normalize_list(_setting(settings, "safety"))),
        policy_blocked=set(_normalize_list(_setting(settings, "blocked"))),
        policy_allowed=set(_normalize_list(_setting(settings, "allowed"))),
        blocked_categories=set(_normalize_list(_setting(settings, "categories"))),
    )


def _mode_blocks_tool(mode: CapabilityPolicyMode, tool_name: str,
                      descriptor: Optional[ToolDescriptor]) -> Optional[str]:
    if descriptor is None or mode == CapabilityPolicyMode.PERMISSIVE:
        return None
    if mode == CapabilityPolicyMode.BALANCED:
        return "blocked by balanced policy (destructive tool)" if descriptor.destructive else None
    if descriptor.destructive:
        return "blocked by strict policy (destructive tool)"
    if any(c in STRICT_BLOCKED_CATEGORIES for c in descriptor.categories):
        return "blocked by strict policy"
    if tool_name == "manage_connectors":
        return "blocked by strict policy"
    return None


def _safety_matches_tool(safety_blocked: Set[str], tool_name: str,
                         descriptor: Optional[ToolDescriptor]) -> bool:
    if tool_name in safety_blocked:
        return True
    if descriptor is None:
        return False
    return any(concrete in safety_blocked for concrete in descriptor.concrete_tools)


def _policy_matches_tool(blocked: Set[str], tool_name: str,
                         descriptor: Optional[ToolDescriptor]) -> bool:
    if tool_name in blocked:
        return True
    if descriptor is None:
        return False
    return any(concrete in blocked for concrete in descriptor.concrete_tools)


def _category_block_reason(blocked_categories: Set[str],
                           descriptor: Optional[ToolDescriptor]) -> Optional[str]:
    if descriptor is None or not blocked_categories:
        return None
    for category in descriptor.categories:
        if category in blocked_categories:
            return f'blocked by policy category "{category}"'
    return None


def resolve_session_tool_policy(
    session_tools: Optional[Iterable[str]],
    settings: Optional[Mapping[str, Any]] = None,
) -> SessionToolPolicyDecision:
    """
    Resolve a session's requested tool families into enabled and blocked sets.

    Args:
        session_tools: Tool family names requested by the session or agent
        settings: Global settings mapping (policy mode, block/allow lists, categories)

    Returns:
        SessionToolPolicyDecision with requested tools deduplicated and lower-cased
    """
    config = _parse_policy_config(settings)
    requested = _normalize_list(list(session_tools) if session_tools is not None else [])
    decision = SessionToolPolicyDecision(mode=config.mode, requested_tools=requested)

    for tool_name in requested:
        descriptor = TOOL_DESCRIPTORS.get(tool_name)

        if _safety_matches_tool(config.safety_blocked, tool_name, descriptor):
            decision.blocked_tools.append(
                CapabilityPolicyBlock(tool_name, "blocked by safety policy", "safety"))
            continue

        if tool_name in config.policy_allowed:
            decision.enabled_tools.append(tool_name)
            continue

        if _policy_matches_tool(config.policy_blocked, tool_name, descriptor):
            decision.blocked_tools.append(
                CapabilityPolicyBlock(tool_name, "blocked by explicit policy rule", "policy"))
            continue

        category_reason = _category_block_reason(config.blocked_categories, descriptor)
        if category_reason:
            decision.blocked_tools.append(CapabilityPolicyBlock(tool_name, category_reason, "policy"))
            continue

        mode_reason = _mode_blocks_tool(config.mode, tool_name, descriptor)
        if mode_reason:
            decision.blocked_tools.append(CapabilityPolicyBlock(tool_name, mode_reason, "policy"))
            continue

        decision.enabled_tools.append(tool_name)

    return decision


def resolve_concrete_tool_policy_block(
    concrete_tool_name: str,
    decision: SessionToolPolicyDecision,
    settings: Optional[Mapping[str, Any]] = None,
) -> Optional[str]:
    """
    Re-check one concrete tool against a session decision.

    Returns:
        The block reason, or None when the tool may run
    """
    name = _normalize_name(concrete_tool_name)
    if not name:
        return "invalid tool name"

    config = _parse_policy_config(settings)

    if name in config.safety_blocked:
        return "blocked by safety policy"

    mapped_tool = CONCRETE_TOOL_TO_SESSION_TOOL.get(name)
    if mapped_tool and mapped_tool in config.safety_blocked:
        return f'blocked because "{mapped_tool}" is safety-blocked'

    if name in config.policy_blocked:
        return "blocked by explicit policy rule"
    if mapped_tool and mapped_tool in config.policy_blocked and mapped_tool not in config.policy_allowed:
        return f'blocked because "{mapped_tool}" is policy-blocked'

    if mapped_tool:
        for entry in decision.blocked_tools:
            if entry.tool == mapped_tool:
                return entry.reason
        if mapped_tool not in decision.enabled_tools:
            return f'tool family "{mapped_tool}" is not enabled for this session'

    return None


def is_strict_mode(settings: Optional[Mapping[str, Any]]) -> bool:
    """True when the global policy asks the graph to pause before every tool step."""
    return _parse_policy_config(settings).mode == CapabilityPolicyMode.STRICT
