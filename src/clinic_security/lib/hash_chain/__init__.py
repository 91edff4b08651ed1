"""Hash chain library: canonical serialization and verification of audit records.

Public API:
    - canonical_fields: Ordered logical fields of one audit record
    - compute_entry_hash: SHA-256 hex digest of a record's canonical fields
    - verify_chain: Re-derive a chain and report tampered entries
    - TamperFinding: One verification issue
"""

from clinic_security.lib.hash_chain.canonical import canonical_fields, compute_entry_hash, format_timestamp
from clinic_security.lib.hash_chain.chain import (
    BROKEN_CHAIN_ISSUE,
    FIRST_ENTRY_ISSUE,
    MISSING_HASH_ISSUE,
    TamperFinding,
    verify_chain,
)

__all__ = [
    "BROKEN_CHAIN_ISSUE",
    "FIRST_ENTRY_ISSUE",
    "MISSING_HASH_ISSUE",
    "TamperFinding",
    "canonical_fields",
    "compute_entry_hash",
    "format_timestamp",
    "verify_chain",
]
