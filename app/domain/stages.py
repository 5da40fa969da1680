"""
app/domain/stages.py

Import pipeline stage graph and transition validation.
"""

from __future__ import annotations

from collections.abc import Iterable

from db.models.import_job import ImportStage

STAGE_ORDER: tuple[str, ...] = (
    ImportStage.DATASET_DETECTION,
    ImportStage.ANALYZE_DUPLICATES,
    ImportStage.DETECT_SCHEMA,
    ImportStage.VALIDATE_SCHEMA,
    ImportStage.AWAIT_APPROVAL,
    ImportStage.CREATE_SCHEMA_VERSION,
    ImportStage.GEOCODE_BATCH,
    ImportStage.CREATE_EVENTS,
    ImportStage.COMPLETED,
)

VALID_TRANSITIONS: dict[str, frozenset[str]] = {
    ImportStage.DATASET_DETECTION: frozenset({ImportStage.ANALYZE_DUPLICATES}),
    ImportStage.ANALYZE_DUPLICATES: frozenset({ImportStage.DETECT_SCHEMA}),
    ImportStage.DETECT_SCHEMA: frozenset({ImportStage.VALIDATE_SCHEMA}),
    ImportStage.VALIDATE_SCHEMA: frozenset(
        {
            ImportStage.CREATE_SCHEMA_VERSION,
            ImportStage.AWAIT_APPROVAL,
            ImportStage.GEOCODE_BATCH,
        }
    ),
    ImportStage.AWAIT_APPROVAL: frozenset({ImportStage.CREATE_SCHEMA_VERSION}),
    ImportStage.CREATE_SCHEMA_VERSION: frozenset({ImportStage.GEOCODE_BATCH}),
    ImportStage.GEOCODE_BATCH: frozenset({ImportStage.CREATE_EVENTS}),
    ImportStage.CREATE_EVENTS: frozenset({ImportStage.COMPLETED}),
    ImportStage.COMPLETED: frozenset(),
    ImportStage.FAILED: frozenset(),
}

DEFAULT_RECOVERY_STAGES: frozenset[str] = frozenset(
    {
        ImportStage.ANALYZE_DUPLICATES,
        ImportStage.DETECT_SCHEMA,
        ImportStage.VALIDATE_SCHEMA,
        ImportStage.CREATE_SCHEMA_VERSION,
        ImportStage.GEOCODE_BATCH,
        ImportStage.CREATE_EVENTS,
    }
)

# Where a failed job re-enters, keyed by its last successfully completed stage.
RESUME_AFTER: dict[str, str] = {
    ImportStage.DATASET_DETECTION: ImportStage.ANALYZE_DUPLICATES,
    ImportStage.ANALYZE_DUPLICATES: ImportStage.DETECT_SCHEMA,
    ImportStage.DETECT_SCHEMA: ImportStage.VALIDATE_SCHEMA,
    ImportStage.VALIDATE_SCHEMA: ImportStage.VALIDATE_SCHEMA,
    ImportStage.AWAIT_APPROVAL: ImportStage.CREATE_SCHEMA_VERSION,
    ImportStage.CREATE_SCHEMA_VERSION: ImportStage.GEOCODE_BATCH,
    ImportStage.GEOCODE_BATCH: ImportStage.CREATE_EVENTS,
    ImportStage.CREATE_EVENTS: ImportStage.CREATE_EVENTS,
}


class StageTransitionError(RuntimeError):
    """
    Raised when a stage write does not follow the transition graph.
    """

    def __init__(self, current: str, requested: str, message: str | None = None) -> None:
        self.current = current
        self.requested = requested
        super().__init__(message or f"Invalid stage transition {current!r} -> {requested!r}")


class TerminalStateError(StageTransitionError):
    """
    Raised when a COMPLETED job is written, or a FAILED job is moved to a
    stage outside its recovery whitelist.
    """


def is_known_stage(stage: str) -> bool:
    return stage in VALID_TRANSITIONS


def validate_transition(
    current: str,
    requested: str,
    *,
    recovery_stages: Iterable[str] | None = None,
) -> bool:
    """
    Check one stage write.

    Returns False when the write is a same-stage no-op, True when it is a
    real transition, and raises when it is not allowed.
    """

    if not is_known_stage(requested):
        raise StageTransitionError(current, requested, f"Unknown stage {requested!r}")

    if current == ImportStage.COMPLETED:
        raise TerminalStateError(current, requested, "Completed import jobs cannot change stage")

    if current == ImportStage.FAILED:
        if requested == ImportStage.FAILED:
            return False
        allowed = frozenset(recovery_stages) if recovery_stages is not None else DEFAULT_RECOVERY_STAGES
        if requested not in allowed:
            raise TerminalStateError(
                current,
                requested,
                f"Failed import jobs may only be recovered to {sorted(allowed)}, not {requested!r}",
            )
        return True

    if current == requested:
        return False

    if requested == ImportStage.FAILED:
        return True

    if requested not in VALID_TRANSITIONS.get(current, frozenset()):
        raise StageTransitionError(current, requested)
    return True


def stage_after(stage: str | None) -> str:
    """
    Stage to resume at after `stage` last completed successfully.
    """

    if stage is None:
        return ImportStage.ANALYZE_DUPLICATES
    return RESUME_AFTER.get(stage, ImportStage.ANALYZE_DUPLICATES)
