"""Reconciliation package: watch-event decisions and the scrobble pipeline.

Only the pure decision core is exported here; the pipeline lives in
reconciliation.engine and reconciliation.backfill, which depend on the
worker package (and worker.applier on the decision types below).
"""
from reconciliation.reconciler import (
    AdvanceProgress,
    CreateEntry,
    Direction,
    MutationDecision,
    NoOp,
    NoOpReason,
    ReconciliationInput,
    ResetProgress,
    Transition,
    reconcile,
)

__all__ = [
    'AdvanceProgress',
    'CreateEntry',
    'Direction',
    'MutationDecision',
    'NoOp',
    'NoOpReason',
    'ReconciliationInput',
    'ResetProgress',
    'Transition',
    'reconcile',
]
