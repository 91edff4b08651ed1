"""Chain verification over an ordered sequence of audit records."""

from collections.abc import Sequence
from dataclasses import dataclass

from clinic_security.lib.hash_chain.canonical import ChainRecord, compute_entry_hash

FIRST_ENTRY_ISSUE = "First entry should have empty previous_hash"
MISSING_HASH_ISSUE = "Missing hash (pre-migration log)"
BROKEN_CHAIN_ISSUE = "Hash chain broken"


@dataclass
class TamperFinding:
    """A single chain verification issue."""

    log_id: int
    issue: str
    expected_previous_hash: str | None = None
    stored_previous_hash: str | None = None

    def to_dict(self) -> dict[str, object]:
        data: dict[str, object] = {"logId": self.log_id, "issue": self.issue}
        if self.issue == BROKEN_CHAIN_ISSUE:
            data["expectedPreviousHash"] = self.expected_previous_hash
            data["storedPreviousHash"] = self.stored_previous_hash
        elif self.issue == FIRST_ENTRY_ISSUE:
            data["storedPreviousHash"] = self.stored_previous_hash
        return data


def verify_chain(records: Sequence[ChainRecord]) -> list[TamperFinding]:
    """Re-derive the hash chain and return every record that does not link up.

    Args:
        records: Audit records ordered by id ascending.

    Returns:
        Findings in record order; empty when the chain is intact.
    """
    findings: list[TamperFinding] = []
    for index, record in enumerate(records):
        stored = record.previous_hash
        if index == 0:
            if stored not in ("", None):
                findings.append(TamperFinding(record.id, FIRST_ENTRY_ISSUE, stored_previous_hash=stored))
            continue
        if stored is None:
            findings.append(TamperFinding(record.id, MISSING_HASH_ISSUE))
            continue
        expected = compute_entry_hash(records[index - 1])
        if stored != expected:
            findings.append(
                TamperFinding(
                    record.id,
                    BROKEN_CHAIN_ISSUE,
                    expected_previous_hash=expected,
                    stored_previous_hash=stored,
                )
            )
    return findings
