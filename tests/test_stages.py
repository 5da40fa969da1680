from __future__ import annotations

import unittest

from app.domain.stages import (
    DEFAULT_RECOVERY_STAGES,
    StageTransitionError,
    TerminalStateError,
    stage_after,
    validate_transition,
)
from app.services.stage_orchestrator import ErrorCategory, classify_error, stage_task_key
from db.models.import_job import ImportStage


class TestValidateTransition(unittest.TestCase):
    def test_forward_transitions_are_allowed(self) -> None:
        path = [
            ImportStage.ANALYZE_DUPLICATES,
            ImportStage.DETECT_SCHEMA,
            ImportStage.VALIDATE_SCHEMA,
            ImportStage.CREATE_SCHEMA_VERSION,
            ImportStage.GEOCODE_BATCH,
            ImportStage.CREATE_EVENTS,
            ImportStage.COMPLETED,
        ]
        for current, requested in zip(path, path[1:]):
            self.assertTrue(validate_transition(current, requested))

    def test_validate_schema_may_skip_to_geocoding_or_wait_for_approval(self) -> None:
        self.assertTrue(validate_transition(ImportStage.VALIDATE_SCHEMA, ImportStage.GEOCODE_BATCH))
        self.assertTrue(validate_transition(ImportStage.VALIDATE_SCHEMA, ImportStage.AWAIT_APPROVAL))
        self.assertTrue(validate_transition(ImportStage.AWAIT_APPROVAL, ImportStage.CREATE_SCHEMA_VERSION))

    def test_same_stage_write_is_a_no_op(self) -> None:
        self.assertFalse(validate_transition(ImportStage.GEOCODE_BATCH, ImportStage.GEOCODE_BATCH))
        self.assertFalse(validate_transition(ImportStage.FAILED, ImportStage.FAILED))

    def test_skipping_ahead_is_rejected(self) -> None:
        with self.assertRaises(StageTransitionError):
            validate_transition(ImportStage.ANALYZE_DUPLICATES, ImportStage.CREATE_EVENTS)

    def test_going_backwards_is_rejected(self) -> None:
        with self.assertRaises(StageTransitionError):
            validate_transition(ImportStage.CREATE_EVENTS, ImportStage.DETECT_SCHEMA)

    def test_unknown_stage_is_rejected(self) -> None:
        with self.assertRaises(StageTransitionError):
            validate_transition(ImportStage.DETECT_SCHEMA, "publish")

    def test_any_active_stage_may_fail(self) -> None:
        for stage in (
            ImportStage.ANALYZE_DUPLICATES,
            ImportStage.AWAIT_APPROVAL,
            ImportStage.CREATE_EVENTS,
        ):
            self.assertTrue(validate_transition(stage, ImportStage.FAILED))

    def test_completed_is_terminal(self) -> None:
        with self.assertRaises(TerminalStateError):
            validate_transition(ImportStage.COMPLETED, ImportStage.FAILED)
        with self.assertRaises(TerminalStateError):
            validate_transition(ImportStage.COMPLETED, ImportStage.COMPLETED)

    def test_failed_may_only_recover_to_recovery_stages(self) -> None:
        for stage in DEFAULT_RECOVERY_STAGES:
            self.assertTrue(validate_transition(ImportStage.FAILED, stage))
        with self.assertRaises(TerminalStateError):
            validate_transition(ImportStage.FAILED, ImportStage.COMPLETED)
        with self.assertRaises(TerminalStateError):
            validate_transition(ImportStage.FAILED, ImportStage.AWAIT_APPROVAL)

    def test_custom_recovery_stages_replace_defaults(self) -> None:
        recovery = {ImportStage.CREATE_EVENTS}
        self.assertTrue(validate_transition(ImportStage.FAILED, ImportStage.CREATE_EVENTS, recovery_stages=recovery))
        with self.assertRaises(TerminalStateError):
            validate_transition(ImportStage.FAILED, ImportStage.DETECT_SCHEMA, recovery_stages=recovery)


class TestStageAfter(unittest.TestCase):
    def test_fresh_job_starts_at_duplicate_analysis(self) -> None:
        self.assertEqual(stage_after(None), ImportStage.ANALYZE_DUPLICATES)

    def test_resume_points(self) -> None:
        self.assertEqual(stage_after(ImportStage.ANALYZE_DUPLICATES), ImportStage.DETECT_SCHEMA)
        self.assertEqual(stage_after(ImportStage.CREATE_SCHEMA_VERSION), ImportStage.GEOCODE_BATCH)
        self.assertEqual(stage_after(ImportStage.GEOCODE_BATCH), ImportStage.CREATE_EVENTS)

    def test_approved_job_resumes_at_version_publishing(self) -> None:
        resume = stage_after(ImportStage.AWAIT_APPROVAL)
        self.assertEqual(resume, ImportStage.CREATE_SCHEMA_VERSION)
        self.assertIn(resume, DEFAULT_RECOVERY_STAGES)


class TestOrchestratorHelpers(unittest.TestCase):
    def test_stage_task_key_includes_batch_only_after_first(self) -> None:
        self.assertEqual(stage_task_key("job-1", ImportStage.GEOCODE_BATCH), "job-1:geocode-batch")
        self.assertEqual(stage_task_key("job-1", ImportStage.GEOCODE_BATCH, 3), "job-1:geocode-batch:3")

    def test_classify_error(self) -> None:
        self.assertEqual(classify_error("Stored file not found: x.csv"), ErrorCategory.PERMANENT)
        self.assertEqual(classify_error("Schema for import job 1 has not been approved"), ErrorCategory.USER_ACTION_REQUIRED)
        self.assertEqual(classify_error("Geocoding quota exceeded"), ErrorCategory.USER_ACTION_REQUIRED)
        self.assertEqual(classify_error("connection reset by peer"), ErrorCategory.RECOVERABLE)
        self.assertEqual(classify_error(None), ErrorCategory.RECOVERABLE)
