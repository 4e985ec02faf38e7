"""Public interface for the ``finance_tracker`` package.

This module exposes the deduplication engine's entry points and value types as
the stable import surface. There is no runtime logic here, only re-exports.
"""

from .consolidation import (
    analyze,
    apply_fixes,
    consolidate,
    handle_request,
    merge_normalized,
)
from .duplicates import cluster, find_duplicate_pairs, group_by_normalized_name, match_key
from .identity import IdentityScheme, allocate_key, identity_key, transaction_key
from .ingest import extract_statement_payload, import_statement
from .migration import migrate_identity_keys
from .models import (
    AnalysisReport,
    BatchSummary,
    CanonicalMode,
    Confidence,
    DuplicateGroup,
    DuplicatePair,
    ImportSummary,
    MigrationSummary,
    ParsedStatement,
    ParsedTransaction,
    Prediction,
    SimilarityScore,
)
from .normalizers import normalize
from .reconciliation import reconcile_group, reconcile_tuple
from .requests import (
    Analyze,
    ConfirmationRequiredError,
    Consolidate,
    Fix,
    FixInstruction,
    InvalidRequestError,
    MergeNormalized,
    MigrateIdentities,
    parse_request,
)
from .similarity import analyze_match, predict, score

__all__ = [
    # Actions
    "analyze",
    "apply_fixes",
    "consolidate",
    "handle_request",
    "import_statement",
    "extract_statement_payload",
    "merge_normalized",
    "migrate_identity_keys",
    # Engine
    "normalize",
    "score",
    "predict",
    "analyze_match",
    "identity_key",
    "transaction_key",
    "allocate_key",
    "cluster",
    "find_duplicate_pairs",
    "group_by_normalized_name",
    "match_key",
    "reconcile_group",
    "reconcile_tuple",
    # Requests
    "Analyze",
    "Fix",
    "FixInstruction",
    "Consolidate",
    "MergeNormalized",
    "MigrateIdentities",
    "parse_request",
    "InvalidRequestError",
    "ConfirmationRequiredError",
    # Types
    "AnalysisReport",
    "BatchSummary",
    "CanonicalMode",
    "Confidence",
    "DuplicateGroup",
    "DuplicatePair",
    "IdentityScheme",
    "ImportSummary",
    "MigrationSummary",
    "ParsedStatement",
    "ParsedTransaction",
    "Prediction",
    "SimilarityScore",
]
