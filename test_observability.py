"""test_observability.py — Audit events must never disturb the caller."""

from __future__ import annotations

import json
import os
import sys
import threading
import unittest
from unittest.mock import MagicMock, patch

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "python"))

from botocore.exceptions import ClientError

from taskflow_data import observability
from taskflow_data.observability import emit_audit_event


class AuditEventTests(unittest.TestCase):
    def setUp(self):
        observability._ready_streams.clear()

    def test_logs_json_line(self):
        with self.assertLogs("taskflow_data.observability", level="INFO") as logs:
            emit_audit_event("project_created", entity_id="p1", actor_id="u1", item_count=3)
        line = logs.output[0].split("[OBSERVABILITY] ", 1)[1]
        payload = json.loads(line)
        self.assertEqual(payload["event"], "project_created")
        self.assertEqual(payload["entity_id"], "p1")
        self.assertEqual(payload["item_count"], 3)
        self.assertEqual(payload["component"], "taskflow_data")

    @patch("taskflow_data.observability._get_logs")
    def test_mirror_to_cloudwatch(self, mock_get_logs):
        logs = MagicMock()
        mock_get_logs.return_value = logs

        emit_audit_event("task_created", entity_id="t1", mirror_log_group="/taskflow/audit")
        emit_audit_event("task_deleted", entity_id="t1", mirror_log_group="/taskflow/audit")

        logs.create_log_group.assert_called_once_with(logGroupName="/taskflow/audit")
        self.assertEqual(logs.put_log_events.call_count, 2)
        second = logs.put_log_events.call_args_list[1].kwargs
        self.assertNotIn("sequenceToken", second)
        self.assertEqual(json.loads(second["logEvents"][0]["message"])["event"], "task_deleted")

    @patch("taskflow_data.observability._get_logs")
    def test_concurrent_mirrors_all_deliver(self, mock_get_logs):
        logs = MagicMock()
        mock_get_logs.return_value = logs
        threads = [
            threading.Thread(target=emit_audit_event, args=("user_updated",), kwargs={"mirror_log_group": "/taskflow/audit"})
            for _ in range(8)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join(5)
        self.assertEqual(logs.put_log_events.call_count, 8)
        self.assertEqual(observability._ready_streams, {("/taskflow/audit", "data-access-audit")})

    @patch("taskflow_data.observability._get_logs")
    def test_existing_log_group_is_fine(self, mock_get_logs):
        logs = MagicMock()
        logs.create_log_group.side_effect = ClientError(
            {"Error": {"Code": "ResourceAlreadyExistsException", "Message": "exists"}}, "CreateLogGroup"
        )
        mock_get_logs.return_value = logs
        emit_audit_event("user_created", mirror_log_group="/taskflow/audit")
        logs.put_log_events.assert_called_once()

    @patch("taskflow_data.observability._get_logs")
    def test_mirror_failure_never_raises(self, mock_get_logs):
        logs = MagicMock()
        logs.put_log_events.side_effect = RuntimeError("network down")
        mock_get_logs.return_value = logs
        emit_audit_event("user_deleted", mirror_log_group="/taskflow/audit")

        mock_get_logs.side_effect = RuntimeError("no credentials")
        emit_audit_event("user_deleted", mirror_log_group="/taskflow/other")


if __name__ == "__main__":
    unittest.main()
