"""
Unit tests for the exception hierarchy and wrap_exception.
"""

import unittest

from swarm_engine.utils.exceptions import (
    AgentExecutionError,
    ExecutionTimeoutError,
    MissingDependencyError,
    StorageError,
    wrap_exception,
)


class TestWrapException(unittest.TestCase):

    def test_engine_errors_pass_through(self):
        original = ExecutionTimeoutError(60.0)
        self.assertIs(wrap_exception(original, "task_run"), original)

    def test_generic_error_becomes_agent_execution_error(self):
        original = RuntimeError("provider unavailable")
        error = wrap_exception(original, "task_run", {"task_id": "t1", "agent_name": "Researcher"})

        self.assertIsInstance(error, AgentExecutionError)
        self.assertEqual(error.message, "provider unavailable")
        self.assertEqual(error.details["task_id"], "t1")
        self.assertEqual(error.agent_name, "Researcher")
        self.assertIs(error.original_error, original)

    def test_empty_message_uses_class_name(self):
        self.assertEqual(wrap_exception(KeyError(), "task_run").message, "KeyError")

    def test_import_error_becomes_missing_dependency(self):
        error = wrap_exception(ImportError("no module"), "model_build", {"package_name": "langchain-openai"})
        self.assertIsInstance(error, MissingDependencyError)
        self.assertIn("langchain-openai", error.message)

    def test_os_error_with_collection_becomes_storage_error(self):
        error = wrap_exception(OSError("disk full"), "save", {"collection": "tasks"})
        self.assertIsInstance(error, StorageError)
        self.assertEqual(error.to_dict()["details"]["collection"], "tasks")


if __name__ == "__main__":
    unittest.main()
