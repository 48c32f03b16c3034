"""
Unit tests for the capability policy resolver.
"""

import unittest

from swarm_engine.core.capability_policy import (
    is_strict_mode,
    resolve_concrete_tool_policy_block,
    resolve_session_tool_policy,
)
from swarm_engine.models import CapabilityPolicyMode


def _blocked(decision):
    return {b.tool: (b.reason, b.source) for b in decision.blocked_tools}


class TestSessionToolPolicy(unittest.TestCase):
    """Tests for resolve_session_tool_policy."""

    def test_permissive_enables_everything(self):
        decision = resolve_session_tool_policy(["shell", "files", "delete_file"], {})
        self.assertEqual(decision.mode, CapabilityPolicyMode.PERMISSIVE)
        self.assertEqual(decision.enabled_tools, ["shell", "files", "delete_file"])
        self.assertEqual(decision.blocked_tools, [])

    def test_requested_tools_are_normalized(self):
        decision = resolve_session_tool_policy([" Shell ", "shell", "", 42], {})
        self.assertEqual(decision.requested_tools, ["shell"])

    def test_safety_wins_over_allow(self):
        decision = resolve_session_tool_policy(
            ["shell"],
            {"safety_blocked_tools": ["shell"], "capability_allowed_tools": ["shell"]},
        )
        self.assertEqual(decision.enabled_tools, [])
        self.assertEqual(_blocked(decision)["shell"], ("blocked by safety policy", "safety"))

    def test_safety_matches_concrete_sub_tool(self):
        decision = resolve_session_tool_policy(["files"], {"safety_blocked_tools": ["write_file"]})
        self.assertEqual(_blocked(decision)["files"][1], "safety")

    def test_allow_overrides_policy_block_and_mode(self):
        decision = resolve_session_tool_policy(
            ["shell"],
            {
                "capability_policy_mode": "strict",
                "capability_blocked_tools": ["shell"],
                "capability_allowed_tools": ["shell"],
            },
        )
        self.assertEqual(decision.enabled_tools, ["shell"])

    def test_explicit_block(self):
        decision = resolve_session_tool_policy(["web_search"], {"capability_blocked_tools": ["web_search"]})
        self.assertEqual(_blocked(decision)["web_search"], ("blocked by explicit policy rule", "policy"))

    def test_blocked_category(self):
        decision = resolve_session_tool_policy(["browser"], {"capability_blocked_categories": ["network"]})
        self.assertEqual(_blocked(decision)["browser"][0], 'blocked by policy category "network"')

    def test_balanced_blocks_only_destructive(self):
        decision = resolve_session_tool_policy(["delete_file", "write_file"], {"capability_policy_mode": "balanced"})
        self.assertEqual(decision.enabled_tools, ["write_file"])
        self.assertEqual(_blocked(decision)["delete_file"][0], "blocked by balanced policy (destructive tool)")

    def test_strict_blocks_execution_but_not_memory(self):
        decision = resolve_session_tool_policy(
            ["shell", "memory", "web_search", "delete_file"], {"capabilityPolicyMode": "strict"},
        )
        blocked = _blocked(decision)
        self.assertEqual(blocked["shell"][0], "blocked by strict policy")
        self.assertEqual(blocked["delete_file"][0], "blocked by strict policy (destructive tool)")
        self.assertEqual(decision.enabled_tools, ["memory", "web_search"])

    def test_strict_blocks_connector_messaging(self):
        decision = resolve_session_tool_policy(["manage_connectors"], {"capability_policy_mode": "strict"})
        self.assertIn("manage_connectors", _blocked(decision))

    def test_unknown_tools_pass_through(self):
        decision = resolve_session_tool_policy(["custom_tool"], {"capability_policy_mode": "strict"})
        self.assertEqual(decision.enabled_tools, ["custom_tool"])


class TestConcreteToolPolicy(unittest.TestCase):
    """Tests for resolve_concrete_tool_policy_block."""

    def test_enabled_family_allows_concrete_tool(self):
        decision = resolve_session_tool_policy(["memory"], {})
        self.assertIsNone(resolve_concrete_tool_policy_block("context_status", decision, {}))

    def test_safety_blocked_family(self):
        settings = {"safety_blocked_tools": ["shell"]}
        decision = resolve_session_tool_policy(["shell"], settings)
        self.assertEqual(
            resolve_concrete_tool_policy_block("execute_command", decision, settings),
            'blocked because "shell" is safety-blocked',
        )

    def test_family_not_enabled(self):
        decision = resolve_session_tool_policy(["memory"], {})
        self.assertEqual(
            resolve_concrete_tool_policy_block("execute_command", decision, {}),
            'tool family "shell" is not enabled for this session',
        )

    def test_reuses_decision_reason(self):
        settings = {"capability_policy_mode": "balanced"}
        decision = resolve_session_tool_policy(["delete_file"], settings)
        self.assertEqual(
            resolve_concrete_tool_policy_block("delete_file", decision, settings),
            "blocked by balanced policy (destructive tool)",
        )

    def test_invalid_name(self):
        decision = resolve_session_tool_policy([], {})
        self.assertEqual(resolve_concrete_tool_policy_block("  ", decision, {}), "invalid tool name")

    def test_strict_mode_flag(self):
        self.assertTrue(is_strict_mode({"capability_policy_mode": "STRICT"}))
        self.assertFalse(is_strict_mode({"capability_policy_mode": "balanced"}))
        self.assertFalse(is_strict_mode(None))


if __name__ == "__main__":
    unittest.main()
