"""
Tests for the audit trail
"""

import threading

import pydantic
import pytest

from medproof.audit import AuditAction, AuditFilter, AuditLogEntry, AuditStorage, AuditTrail
from medproof.context import AccessContext

from conftest import FakeClock


HOSPITAL = AccessContext(accessor_id="HOSP001", accessor_type="hospital")
INSURER = AccessContext(accessor_id="INS001", accessor_type="insurer", ip_address="10.0.0.7")


class TestAuditTrail:
    """Test appending and querying audit entries"""

    def setup_method(self):
        self.clock = FakeClock()
        self.trail = AuditTrail(clock=self.clock)

    def test_append_assigns_sequence_and_id(self):
        first = self.trail.append(AuditAction.UPLOAD, HOSPITAL, subject_id="P001", record_id="REC1",
                                  verified=True)
        second = self.trail.append(AuditAction.VIEW, INSURER, subject_id="P001", record_id="REC1")

        assert (first.sequence, second.sequence) == (1, 2)
        assert first.id != second.id
        assert first.id.startswith("audit_")
        assert first.id.endswith("_00000001")
        assert second.previous_hash == first.hash
        assert second.ip_address == "10.0.0.7"

    def test_query_most_recent_first(self):
        for action in (AuditAction.UPLOAD, AuditAction.REQUEST, AuditAction.APPROVE):
            self.trail.append(action, HOSPITAL, subject_id="P001", record_id="REC1")

        actions = [e.action for e in self.trail.query()]
        assert actions == [AuditAction.APPROVE, AuditAction.REQUEST, AuditAction.UPLOAD]

    def test_query_filters(self):
        self.trail.append(AuditAction.UPLOAD, HOSPITAL, subject_id="P001", record_id="REC1")
        self.trail.append(AuditAction.VIEW, INSURER, subject_id="P001", record_id="REC1")
        self.trail.append(AuditAction.UPLOAD, HOSPITAL, subject_id="P002", record_id="REC2")

        assert len(self.trail.query(AuditFilter(subject_id="P001"))) == 2
        assert len(self.trail.query(AuditFilter(accessor_id="INS001"))) == 1
        assert len(self.trail.query(AuditFilter(action=AuditAction.UPLOAD))) == 2
        assert len(self.trail.query(AuditFilter(subject_id="P002", record_id="REC1"))) == 0
        assert len(self.trail.query(limit=1)) == 1

    def test_stats(self):
        self.trail.append(AuditAction.UPLOAD, HOSPITAL, subject_id="P001", record_id="REC1")
        for _ in range(6):
            self.trail.append(AuditAction.VIEW, INSURER, subject_id="P001", record_id="REC1")

        stats = self.trail.stats("P001")

        assert stats["total"] == 7
        assert stats["by_action"] == {"UPLOAD": 1, "VIEW": 6}
        assert stats["by_accessor_type"] == {"hospital": 1, "insurer": 6}
        assert len(stats["recent"]) == 5

    def test_verify_integrity(self):
        for action in (AuditAction.UPLOAD, AuditAction.VIEW, AuditAction.DENY):
            self.trail.append(action, HOSPITAL, subject_id="P001", detail={"note": action.value})

        assert self.trail.verify_integrity()

    def test_edit_breaks_integrity(self):
        """Editing an appended entry is detectable"""
        self.trail.append(AuditAction.UPLOAD, HOSPITAL, subject_id="P001")
        self.trail.append(AuditAction.VIEW, INSURER, subject_id="P001", verified=True)

        self.trail.storage.entries[1] = self.trail.storage.entries[1].model_copy(
            update={"verified": False}
        )

        assert not self.trail.verify_integrity()

    def test_query_returns_copies(self):
        """Changing a returned entry leaves the log untouched"""
        self.trail.append(AuditAction.UPLOAD, HOSPITAL, subject_id="P001", detail={"block_ref": 1})

        returned = self.trail.query()[0]
        returned.detail["block_ref"] = 2
        with pytest.raises(pydantic.ValidationError):
            returned.verified = True

        assert self.trail.query()[0].detail == {"block_ref": 1}
        assert self.trail.verify_integrity()

    def test_export(self):
        self.trail.append(AuditAction.UPLOAD, HOSPITAL, subject_id="P001")
        self.trail.append(AuditAction.UPLOAD, HOSPITAL, subject_id="P002")

        export = self.trail.export("P001")

        assert export["entry_count"] == 1
        assert export["entries"][0]["subject_id"] == "P001"
        assert export["integrity_verified"]

    def test_concurrent_appends(self):
        """No entry is lost and sequence numbers stay unique"""

        def worker():
            for _ in range(50):
                self.trail.append(AuditAction.VIEW, INSURER, subject_id="P001")

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        entries = self.trail.query()
        assert len(self.trail) == 400
        assert sorted(e.sequence for e in entries) == list(range(1, 401))
        assert len({e.id for e in entries}) == 400
        assert self.trail.verify_integrity()


class TestSqlAuditTrail:
    """Test the SQL-backed audit log"""

    def test_resume_after_restart(self, tmp_path):
        """A new trail over the same database continues the chain"""
        url = f"sqlite:///{tmp_path / 'audit.db'}"
        trail = AuditTrail(AuditStorage(url), clock=FakeClock())
        trail.append(AuditAction.UPLOAD, HOSPITAL, subject_id="P001", detail={"block_ref": 1})
        trail.append(AuditAction.VIEW, INSURER, subject_id="P001", verified=True)

        reopened = AuditTrail(AuditStorage(url), clock=FakeClock())
        entry = reopened.append(AuditAction.DOWNLOAD, INSURER, subject_id="P001")

        assert entry.sequence == 3
        assert len(reopened) == 3
        assert reopened.verify_integrity()
        assert [e.sequence for e in reopened.query(AuditFilter(subject_id="P001"))] == [3, 2, 1]

    def test_interleaved_writers(self, tmp_path):
        """Two trails on one database share a single sequence and chain"""
        url = f"sqlite:///{tmp_path / 'audit.db'}"
        first = AuditTrail(AuditStorage(url), clock=FakeClock())
        second = AuditTrail(AuditStorage(url), clock=FakeClock())

        first.append(AuditAction.UPLOAD, HOSPITAL, subject_id="P001")
        second.append(AuditAction.VIEW, INSURER, subject_id="P001")
        entry = first.append(AuditAction.VIEW, INSURER, subject_id="P001")

        assert entry.sequence == 3
        assert len(second) == 3
        assert [e.sequence for e in second.query()] == [3, 2, 1]
        assert first.verify_integrity()

    def test_sequence_conflict_rereads_head(self, tmp_path):
        """An insert that loses its sequence to another writer is rebuilt on the new head"""
        url = f"sqlite:///{tmp_path / 'audit.db'}"
        clock = FakeClock()
        storage = AuditStorage(url)
        AuditTrail(storage, clock=clock).append(AuditAction.UPLOAD, HOSPITAL, subject_id="P001")
        stale_head = storage.all_entries()[-1]
        AuditTrail(AuditStorage(url), clock=clock).append(AuditAction.VIEW, INSURER, subject_id="P001")

        heads = []

        def build(head):
            heads.append(head.sequence)
            base = stale_head if len(heads) == 1 else head
            sequence = base.sequence + 1
            return AuditLogEntry(
                id=f"audit_conflict_{len(heads)}",
                sequence=sequence,
                timestamp=clock(),
                accessor_id="INS001",
                accessor_type="insurer",
                action=AuditAction.VIEW,
                previous_hash=base.hash,
                hash=f"hash-{sequence}",
            )

        entry = storage.append_entry(build)

        assert heads == [2, 2]
        assert entry.sequence == 3
        assert storage.count() == 3
