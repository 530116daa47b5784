"""
On-disk provenance storage under ``<workspace>/.ai-context/``.

- ProvenanceStore: response-keyed records plus a derived index
- CommitContextStore: one document per provenance commit
"""

from .commit_contexts import CommitContextStore
from .provenance import ProvenanceStore, build_index, merge_records

__all__ = [
    "CommitContextStore",
    "ProvenanceStore",
    "build_index",
    "merge_records",
]
