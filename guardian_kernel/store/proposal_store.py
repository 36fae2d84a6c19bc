"""
Proposal Store — durable proposal records plus a hash-chained audit trail.

Behavioral Contract:
- One row per proposal, keyed by id, queryable by (child_id, setting_type, status).
- Proposals are never deleted.
- Every update is a compare-and-swap on (status, version): the write lands only
  if the row still holds the state the caller read. The loser of a race gets
  False and must report "already responded"; nothing is silently overwritten.
- Each transition is appended to `proposal_events`, hashed and chained to the
  previous event (tamper-evident).
"""

import hashlib
import json
import sqlite3
import threading
from datetime import datetime
from typing import Iterable, List, Optional
from uuid import uuid4

from guardian_kernel.models.proposal import (
    ProposalEvent,
    ProposalStatus,
    SafetySettingsProposal,
    SafetySettingType,
)


def _sign(event: ProposalEvent) -> str:
    event_dict = event.model_dump(mode="json")
    # Zero out signature before hashing (it's what we're computing)
    event_dict["signature"] = ""
    event_bytes = json.dumps(event_dict, sort_keys=True, default=str).encode()
    return hashlib.sha256(event_bytes).hexdigest()


class ProposalStore:
    """
    Proposal persistence.
    Prototype: SQLite. Production: a document store with transactional CAS.
    """

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._init_schema()

    def _init_schema(self) -> None:
        """Create tables if they don't exist."""
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS proposals (
                id TEXT PRIMARY KEY,
                child_id TEXT NOT NULL,
                proposed_by TEXT NOT NULL,
                setting_type TEXT NOT NULL,
                status TEXT NOT NULL,
                version INTEGER NOT NULL,
                created_at TEXT NOT NULL,
                expires_at TEXT NOT NULL,
                record_json TEXT NOT NULL
            )
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_proposals_child_setting_status
            ON proposals(child_id, setting_type, status)
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_proposals_status ON proposals(status)
        """)
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS proposal_events (
                id TEXT PRIMARY KEY,
                proposal_id TEXT NOT NULL,
                action TEXT NOT NULL,
                actor TEXT NOT NULL,
                to_status TEXT NOT NULL,
                occurred_at TEXT NOT NULL,
                signature TEXT NOT NULL,
                prior_event_hash TEXT,
                event_json TEXT NOT NULL
            )
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_events_proposal_id ON proposal_events(proposal_id)
        """)
        self._conn.commit()

    # --- Proposals ---

    def _deserialize(self, row: sqlite3.Row) -> SafetySettingsProposal:
        return SafetySettingsProposal.model_validate_json(row["record_json"])

    def insert(self, proposal: SafetySettingsProposal) -> SafetySettingsProposal:
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO proposals (
                    id, child_id, proposed_by, setting_type, status, version,
                    created_at, expires_at, record_json
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    proposal.id,
                    proposal.child_id,
                    proposal.proposed_by,
                    proposal.setting_type.value,
                    proposal.status.value,
                    proposal.version,
                    proposal.created_at.isoformat(),
                    proposal.expires_at.isoformat(),
                    proposal.model_dump_json(),
                ),
            )
            self._conn.commit()
        return proposal

    def compare_and_swap(
        self,
        updated: SafetySettingsProposal,
        expected_status: ProposalStatus,
        expected_version: int,
    ) -> bool:
        """Write `updated` only if the row is still at (expected_status, expected_version)."""
        with self._lock:
            cursor = self._conn.execute(
                """
                UPDATE proposals
                SET status = ?, version = ?, record_json = ?
                WHERE id = ? AND status = ? AND version = ?
                """,
                (
                    updated.status.value,
                    updated.version,
                    updated.model_dump_json(),
                    updated.id,
                    ProposalStatus(expected_status).value,
                    expected_version,
                ),
            )
            self._conn.commit()
            return cursor.rowcount == 1

    def get(self, proposal_id: str) -> Optional[SafetySettingsProposal]:
        row = self._conn.execute(
            "SELECT record_json FROM proposals WHERE id = ?", (proposal_id,)
        ).fetchone()
        return self._deserialize(row) if row else None

    def query(
        self,
        child_id: Optional[str] = None,
        setting_type: Optional[SafetySettingType] = None,
        status: Optional[ProposalStatus] = None,
    ) -> List[SafetySettingsProposal]:
        """Proposals matching every given filter, oldest first."""
        clauses = []
        params: list = []
        if child_id is not None:
            clauses.append("child_id = ?")
            params.append(child_id)
        if setting_type is not None:
            clauses.append("setting_type = ?")
            params.append(SafetySettingType(setting_type).value)
        if status is not None:
            clauses.append("status = ?")
            params.append(ProposalStatus(status).value)

        sql = "SELECT record_json FROM proposals"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY created_at, rowid"
        rows = self._conn.execute(sql, params).fetchall()
        return [self._deserialize(r) for r in rows]

    def list_by_statuses(self, statuses: Iterable[ProposalStatus]) -> List[SafetySettingsProposal]:
        values = [ProposalStatus(s).value for s in statuses]
        if not values:
            return []
        placeholders = ", ".join("?" for _ in values)
        rows = self._conn.execute(
            f"SELECT record_json FROM proposals WHERE status IN ({placeholders}) "
            "ORDER BY created_at, rowid",
            values,
        ).fetchall()
        return [self._deserialize(r) for r in rows]

    def count(self) -> int:
        row = self._conn.execute("SELECT COUNT(*) as cnt FROM proposals").fetchone()
        return row["cnt"]

    # --- Audit trail ---

    def _get_latest_hash(self) -> Optional[str]:
        row = self._conn.execute(
            "SELECT signature FROM proposal_events ORDER BY rowid DESC LIMIT 1"
        ).fetchone()
        return row["signature"] if row else None

    def record_event(
        self,
        proposal: SafetySettingsProposal,
        action: str,
        actor: str,
        from_status: Optional[ProposalStatus],
        occurred_at: datetime,
    ) -> ProposalEvent:
        """Append a transition to the audit trail, chained to the previous event."""
        with self._lock:
            event = ProposalEvent(
                id=f"evt_{uuid4().hex[:12]}",
                proposal_id=proposal.id,
                action=action,
                actor=actor,
                from_status=from_status,
                to_status=proposal.status,
                occurred_at=occurred_at,
                prior_event_hash=self._get_latest_hash(),
            )
            event.signature = _sign(event)

            self._conn.execute(
                """
                INSERT INTO proposal_events (
                    id, proposal_id, action, actor, to_status, occurred_at,
                    signature, prior_event_hash, event_json
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    event.id,
                    event.proposal_id,
                    event.action,
                    event.actor,
                    event.to_status.value,
                    event.occurred_at.isoformat(),
                    event.signature,
                    event.prior_event_hash,
                    event.model_dump_json(),
                ),
            )
            self._conn.commit()
        return event

    def events_for(self, proposal_id: str) -> List[ProposalEvent]:
        rows = self._conn.execute(
            "SELECT event_json FROM proposal_events WHERE proposal_id = ? ORDER BY rowid",
            (proposal_id,),
        ).fetchall()
        return [ProposalEvent.model_validate_json(r["event_json"]) for r in rows]

    def verify_chain_integrity(self) -> bool:
        """Verify no audit events have been tampered with."""
        rows = self._conn.execute(
            "SELECT event_json, signature FROM proposal_events ORDER BY rowid"
        ).fetchall()

        for i, row in enumerate(rows):
            event = ProposalEvent.model_validate_json(row["event_json"])
            if event.signature != _sign(event) or event.signature != row["signature"]:
                return False
            expected_prior = rows[i - 1]["signature"] if i > 0 else None
            if event.prior_event_hash != expected_prior:
                return False
        return True

    def close(self) -> None:
        self._conn.close()
