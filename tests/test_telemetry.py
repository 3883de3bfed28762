import unittest

from velopass.domain import TimelineKind
from velopass.errors import QueryError
from velopass.telemetry import RunTelemetry, hash_args


class TestHashArgs(unittest.TestCase):
    def test_key_order_does_not_matter(self):
        self.assertEqual(hash_args({"query": "x", "k": 4}), hash_args({"k": 4, "query": "x"}))

    def test_is_sixteen_hex_chars_and_deterministic(self):
        digest = hash_args({"sql": "SELECT 1"})
        self.assertEqual(len(digest), 16)
        int(digest, 16)
        self.assertEqual(digest, hash_args({"sql": "SELECT 1"}))

    def test_different_args_differ(self):
        self.assertNotEqual(hash_args({"k": 3}), hash_args({"k": 4}))


class TestRunTelemetry(unittest.TestCase):
    def test_successful_call_is_logged(self):
        telemetry = RunTelemetry("run-1")
        result = telemetry.call("calculator", lambda expression: 3, expression="1+2")

        self.assertEqual(result, 3)
        [step] = telemetry.step_log
        self.assertEqual(step.index, 1)
        self.assertEqual(step.tool_name, "calculator")
        self.assertEqual(step.args_fingerprint, hash_args({"expression": "1+2"}))
        self.assertTrue(step.success)
        self.assertIsNone(step.error)
        self.assertGreaterEqual(step.latency_ms, 0)

    def test_failed_call_is_logged_and_reraised(self):
        telemetry = RunTelemetry("run-2")

        def fail(sql):
            raise QueryError("Database error: nope")

        with self.assertRaises(QueryError):
            telemetry.call("csv_sql", fail, sql="SELECT 1")

        [step] = telemetry.step_log
        self.assertFalse(step.success)
        self.assertEqual(step.error, "Database error: nope")

    def test_tool_wrapper_numbers_steps_in_order(self):
        telemetry = RunTelemetry("run-3")
        echo = telemetry.tool("csv_sql", lambda sql: [{"sql": sql}])
        echo(sql="SELECT 1")
        echo(sql="SELECT 2")
        self.assertEqual([s.index for s in telemetry.step_log], [1, 2])

    def test_timeline_kinds_and_snapshots(self):
        telemetry = RunTelemetry("run-4")
        telemetry.thought("plan")
        telemetry.action("do")
        snapshot = telemetry.timeline
        telemetry.observation("saw")
        telemetry.final_answer("done")

        self.assertEqual(len(snapshot), 2)
        self.assertEqual(
            [e.kind for e in telemetry.timeline],
            [
                TimelineKind.THOUGHT,
                TimelineKind.ACTION,
                TimelineKind.OBSERVATION,
                TimelineKind.FINAL_ANSWER,
            ],
        )
        self.assertEqual(telemetry.timeline[-1].kind.value, "Final Answer")


if __name__ == "__main__":
    unittest.main()
