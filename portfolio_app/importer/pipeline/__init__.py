"""
Importer pipeline package.

Stages: validation (rules over staged rows), entity resolution (persons,
satellites, accounts), chunked or full-run processing, and run metrics.
"""

from .job_state import ALLOWED_TRANSITIONS, ProgressDelta, apply_progress, mark_failed, transition
from .performance import RunStatistics, record_import_metrics
from .processor import ChunkResult, RunResult, process_chunk, process_job, process_next_chunk
from .resolver import EntityResolver, ImportTarget, RowOutcome, resolve_import_target
from .rules import RowRule, RuleResult, RuleSeverity, account_rules, evaluate_row
from .staging import fetch_rows_by_number, iter_staging_pages
from .validation import RowDetail, ValidationReport, validate_import_job

__all__ = [
    "ALLOWED_TRANSITIONS",
    "ChunkResult",
    "EntityResolver",
    "ImportTarget",
    "ProgressDelta",
    "RowDetail",
    "RowOutcome",
    "RowRule",
    "RuleResult",
    "RuleSeverity",
    "RunResult",
    "RunStatistics",
    "ValidationReport",
    "account_rules",
    "apply_progress",
    "evaluate_row",
    "fetch_rows_by_number",
    "iter_staging_pages",
    "mark_failed",
    "process_chunk",
    "process_job",
    "process_next_chunk",
    "record_import_metrics",
    "resolve_import_target",
    "transition",
    "validate_import_job",
]
