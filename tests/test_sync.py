"""
Synchronization orchestrator tests - reload, creation, transitions and index repair.
"""

import asyncio
import json
import re

import pytest

from src.core import config
from src.core.cipher import EnvelopeCipher
from src.core.codec import decode_index, encode_index, encode_record, record_key
from src.core.errors import RejectedError, RemoteFailure, UnavailableError
from src.core.ledger import AccountSession, InMemoryLedger, LedgerError
from src.core.schema import CreationStatus, Record, RecordStatus
from src.core.status import ERROR, PENDING, SUCCESS, StatusBoard
from src.core.sync import RecordSynchronizer, describe_failure, new_record_id

INDEX_KEY = "tcm_record_keys"
NO_LATENCY = {RecordStatus.ANALYZED: 0.0, RecordStatus.ARCHIVED: 0.0}


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class FailingRecordWrites(InMemoryLedger):
    """Ledger that reverts every record commit but accepts index commits."""

    async def set_data(self, key, value, signer=None):
        if key.startswith("tcm_record_tcm-"):
            raise LedgerError("execution reverted")
        await super().set_data(key, value, signer)


class HeldIndexReadLedger(InMemoryLedger):
    """Ledger that can park the next index read until released."""

    def __init__(self):
        super().__init__()
        self.read_held = None
        self.release = None

    async def get_data(self, key):
        if key == INDEX_KEY and self.release is not None:
            release, self.release = self.release, None
            self.read_held.set()
            await release.wait()
        return await super().get_data(key)


def make_record(record_id, created_at=100, owner="0xABC", status=RecordStatus.PENDING,
                symptom_pattern="Wind-Cold", herb_formula="Gui Zhi Tang"):
    return Record(
        id=record_id,
        encrypted_payload="FHE-TCM-x",
        created_at=created_at,
        owner=owner,
        symptom_pattern=symptom_pattern,
        herb_formula=herb_formula,
        status=status,
    )


def seed(ledger, *records, index=None):
    for record in records:
        ledger.put_raw(record_key(record.id), encode_record(record))
    ids = index if index is not None else [r.id for r in records]
    ledger.put_raw(INDEX_KEY, encode_index(ids))


@pytest.fixture
def ledger():
    return InMemoryLedger()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sync(ledger, clock):
    return RecordSynchronizer(
        ledger=ledger,
        session=AccountSession("0xABC"),
        cipher=EnvelopeCipher(),
        status_board=StatusBoard(clock=clock),
        lifecycle_latency=NO_LATENCY,
    )


class TestHelpers:
    def test_record_id_format(self):
        assert re.fullmatch(r"tcm-\d{13}-[0-9a-z]{7}", new_record_id())

    def test_record_ids_are_unique(self):
        assert len({new_record_id() for _ in range(100)}) == 100

    def test_describe_failure(self):
        assert describe_failure("Analysis failed", RemoteFailure("out of gas")) == "Analysis failed: out of gas"
        assert describe_failure("Analysis failed", RemoteFailure("")) == "Analysis failed: Unknown error"

    def test_describe_user_rejection(self):
        error = RemoteFailure("MetaMask Tx Signature: User rejected transaction signature.")
        assert describe_failure("Submission failed", error) == "Transaction rejected by user"


class TestFullReload:
    """Test rebuilding the record snapshot from the store."""

    def test_empty_store(self, sync):
        snapshot = asyncio.run(sync.full_reload())

        assert len(snapshot) == 0
        assert snapshot.loaded_at is not None
        assert snapshot.counts() == {"pending": 0, "analyzed": 0, "archived": 0, "total": 0}
        assert sync.last_error is None

    def test_missing_record_is_skipped(self, ledger, sync):
        seed(ledger, make_record("a"), index=["a", "b"])

        snapshot = asyncio.run(sync.full_reload())

        assert [r.id for r in snapshot] == ["a"]

    def test_decoded_fields(self, ledger, sync):
        seed(ledger, make_record("a", created_at=1718000000))

        record = asyncio.run(sync.full_reload()).find("a")

        assert record.symptom_pattern == "Wind-Cold"
        assert record.herb_formula == "Gui Zhi Tang"
        assert record.owner == "0xABC"
        assert record.status == RecordStatus.PENDING

    def test_sorted_newest_first(self, ledger, sync):
        seed(ledger, make_record("old", created_at=100), make_record("new", created_at=200))

        snapshot = asyncio.run(sync.full_reload())

        assert [r.id for r in snapshot] == ["new", "old"]

    def test_equal_timestamps_keep_index_order(self, ledger, sync):
        seed(ledger, make_record("x", created_at=100), make_record("y", created_at=100))
        assert [r.id for r in asyncio.run(sync.full_reload())] == ["x", "y"]

    def test_malformed_and_duplicate_entries(self, ledger, sync):
        seed(ledger, make_record("a"), index=["a", "bad", "a"])
        ledger.put_raw(record_key("bad"), b"{not json")

        snapshot = asyncio.run(sync.full_reload())

        assert [r.id for r in snapshot] == ["a"]

    def test_unparsable_index_yields_empty_snapshot(self, ledger, sync):
        ledger.put_raw(INDEX_KEY, b"garbage")
        assert len(asyncio.run(sync.full_reload())) == 0

    def test_unavailable_keeps_previous_snapshot(self, ledger, sync):
        seed(ledger, make_record("a"))
        before = asyncio.run(sync.full_reload())

        seed(ledger, make_record("a"), make_record("b"))
        ledger.available = False
        after = asyncio.run(sync.full_reload())

        assert after is before
        assert isinstance(sync.last_error, UnavailableError)
        current = sync.status.current()
        assert current.status == ERROR
        assert current.message == "Contract is not available"
        assert sync.refreshing is False

    def test_counts_and_distribution(self, ledger, sync):
        seed(
            ledger,
            make_record("a", status=RecordStatus.PENDING),
            make_record("b", status=RecordStatus.ANALYZED),
            make_record("c", status=RecordStatus.ANALYZED),
            make_record("d", status=RecordStatus.ARCHIVED),
        )

        snapshot = asyncio.run(sync.full_reload())

        assert snapshot.counts() == {"pending": 1, "analyzed": 2, "archived": 1, "total": 4}
        assert snapshot.distribution() == {"pending": 25.0, "analyzed": 50.0, "archived": 25.0}


class TestCreateRecord:
    """Test the creation pipeline."""

    def test_create_then_reload(self, ledger, sync):
        outcome = asyncio.run(sync.create_record("Wind-Cold", "Gui Zhi Tang", patient_info="age 42"))

        assert outcome.status == CreationStatus.CREATED
        assert outcome.ok

        first = sync.snapshot.records[0]
        assert first.id == outcome.record_id
        assert first.symptom_pattern == "Wind-Cold"
        assert first.herb_formula == "Gui Zhi Tang"
        assert first.owner == "0xABC"
        assert first.status == RecordStatus.PENDING
        assert first.encrypted_payload.startswith("FHE-TCM-")

        assert decode_index(ledger.raw(INDEX_KEY)) == [outcome.record_id]
        assert sync.status.current().status == SUCCESS
        assert sync.status.current().message == "TCM data encrypted and submitted securely!"

    def test_payload_carries_patient_info(self, ledger, sync):
        outcome = asyncio.run(sync.create_record("Yin Deficiency", "Liu Wei Di Huang Wan", patient_info="night sweats"))

        stored = json.loads(ledger.raw(record_key(outcome.record_id)))
        fields = EnvelopeCipher().decrypt(stored["data"])
        assert fields == {
            "symptomPattern": "Yin Deficiency",
            "herbFormula": "Liu Wei Di Huang Wan",
            "patientInfo": "night sweats",
        }

    def test_create_sorts_before_older_records(self, ledger, sync):
        seed(ledger, make_record("old", created_at=100))

        outcome = asyncio.run(sync.create_record("Wind-Cold", "Gui Zhi Tang"))

        assert [r.id for r in sync.snapshot] == [outcome.record_id, "old"]

    def test_requires_connected_account(self, ledger, sync):
        sync.session.disconnect()

        outcome = asyncio.run(sync.create_record("Wind-Cold", "Gui Zhi Tang"))

        assert outcome.status == CreationStatus.FAILED
        assert isinstance(outcome.error, RejectedError)
        assert sync.status.current().message == "Please connect wallet first"
        assert ledger.commits == []

    @pytest.mark.parametrize("symptom,formula", [("", "Gui Zhi Tang"), ("Wind-Cold", "  "), ("", "")])
    def test_requires_both_fields(self, ledger, sync, symptom, formula):
        outcome = asyncio.run(sync.create_record(symptom, formula))

        assert outcome.status == CreationStatus.FAILED
        assert sync.status.current().message == "Please fill required fields"
        assert ledger.commits == []

    def test_unavailable_store(self, ledger, sync):
        ledger.available = False

        outcome = asyncio.run(sync.create_record("Wind-Cold", "Gui Zhi Tang"))

        assert outcome.status == CreationStatus.FAILED
        assert isinstance(outcome.error, UnavailableError)
        assert sync.status.current().message == "Submission failed: Contract is not available"
        assert ledger.commits == []

    def test_user_rejected_signature(self, ledger, sync):
        seed(ledger, make_record("old"))
        before = asyncio.run(sync.full_reload())
        ledger.reject_signatures = True

        outcome = asyncio.run(sync.create_record("Wind-Cold", "Gui Zhi Tang"))

        assert outcome.status == CreationStatus.FAILED
        assert sync.status.current().message == "Transaction rejected by user"
        assert [entry.status for entry in sync.status.history][-2:] == [PENDING, ERROR]
        assert sync.snapshot is before
        assert sorted(ledger.keys()) == sorted([INDEX_KEY, record_key("old")])

    def test_record_write_failure_leaves_index_untouched(self, ledger):
        seed(ledger, make_record("a"))
        original_index = ledger.raw(INDEX_KEY)
        failing = FailingRecordWrites(initial={INDEX_KEY: original_index})
        failing_sync = RecordSynchronizer(ledger=failing, session=AccountSession("0xABC"),
                                          cipher=EnvelopeCipher(), lifecycle_latency=NO_LATENCY)

        outcome = asyncio.run(failing_sync.create_record("Wind-Cold", "Gui Zhi Tang"))

        assert outcome.status == CreationStatus.FAILED
        assert outcome.record_id is None
        assert failing.raw(INDEX_KEY) == original_index
        assert failing_sync.status.current().message == "Submission failed: execution reverted"

    def test_index_failure_reports_unindexed_and_repairs(self, ledger, sync):
        ledger.fail_keys.add(INDEX_KEY)

        outcome = asyncio.run(sync.create_record("Wind-Cold", "Gui Zhi Tang"))

        assert outcome.status == CreationStatus.CREATED_UNINDEXED
        assert not outcome.ok
        assert ledger.raw(record_key(outcome.record_id)) != b""
        assert list(sync.unindexed_ids) == [outcome.record_id]
        assert sync.status.current().status == ERROR

        # The orphan is invisible until the index is repaired
        assert len(asyncio.run(sync.full_reload())) == 0

        ledger.fail_keys.clear()
        added = asyncio.run(sync.repair_index())

        assert added == [outcome.record_id]
        assert list(sync.unindexed_ids) == []
        assert [r.id for r in sync.snapshot] == [outcome.record_id]

    def test_repair_failure_keeps_candidates(self, ledger, sync):
        ledger.fail_keys.add(INDEX_KEY)
        outcome = asyncio.run(sync.create_record("Wind-Cold", "Gui Zhi Tang"))

        assert asyncio.run(sync.repair_index()) == []
        assert list(sync.unindexed_ids) == [outcome.record_id]

    def test_repair_with_nothing_remembered(self, sync):
        assert asyncio.run(sync.repair_index()) == []


class TestTransitions:
    """Test analyze and archive through the orchestrator."""

    def test_analyze_owned_record(self, ledger, sync):
        seed(ledger, make_record("a"))

        outcome = asyncio.run(sync.analyze_record("a"))

        assert outcome.ok
        assert outcome.record.status == RecordStatus.ANALYZED
        assert sync.snapshot.find("a").status == RecordStatus.ANALYZED
        assert sync.status.current().message == "FHE analysis completed successfully!"

    def test_archive_owned_record(self, ledger, sync):
        seed(ledger, make_record("a"))

        outcome = asyncio.run(sync.archive_record("a"))

        assert outcome.ok
        assert sync.snapshot.find("a").status == RecordStatus.ARCHIVED
        assert sync.status.current().message == "Record archived successfully!"

    def test_owner_check_uses_account_at_action_time(self, ledger, sync):
        seed(ledger, make_record("a", owner="0xABC"))
        before = asyncio.run(sync.full_reload())
        assert sync.can_act(sync.snapshot.find("a"))

        sync.session.on_accounts_changed(["0xDEF"])
        assert not sync.can_act(sync.snapshot.find("a"))

        outcome = asyncio.run(sync.analyze_record("a"))

        assert not outcome.ok
        assert isinstance(outcome.error, RejectedError)
        assert sync.status.current().message.startswith("Analysis failed: ")
        assert json.loads(ledger.raw(record_key("a")))["status"] == "pending"
        assert [entry.status for entry in sync.status.history][-2:] == [PENDING, ERROR]
        assert sync.snapshot is before
        assert sync.snapshot.find("a").status == RecordStatus.PENDING

    def test_progress_reported_pending_then_success(self, ledger, sync):
        seed(ledger, make_record("a"))
        seen = []
        sync.status.subscribe(lambda entry: seen.append((entry.status, entry.message)))

        asyncio.run(sync.analyze_record("a"))

        assert seen == [
            (PENDING, "Analyzing TCM pattern with FHE..."),
            (SUCCESS, "FHE analysis completed successfully!"),
        ]

    def test_progress_reported_pending_then_error(self, ledger, sync):
        seed(ledger, make_record("a", status=RecordStatus.ARCHIVED))
        seen = []
        sync.status.subscribe(lambda entry: seen.append(entry.status))

        asyncio.run(sync.archive_record("a"))

        assert seen == [PENDING, ERROR]

    def test_terminal_record_rejected(self, ledger, sync):
        seed(ledger, make_record("a", status=RecordStatus.ANALYZED))

        outcome = asyncio.run(sync.archive_record("a"))

        assert isinstance(outcome.error, RejectedError)
        assert sync.status.current().message.startswith("Archive failed: ")
        assert ledger.commits == []

    def test_missing_record(self, sync):
        outcome = asyncio.run(sync.analyze_record("nope"))
        assert outcome.error.kind == "not_found"
        assert sync.status.current().message == "Analysis failed: Record not found"

    def test_disconnected_account(self, ledger, sync):
        seed(ledger, make_record("a"))
        sync.session.disconnect()

        outcome = asyncio.run(sync.analyze_record("a"))

        assert isinstance(outcome.error, RejectedError)
        assert sync.status.current().message == "Please connect wallet first"

    def test_unavailable_store(self, ledger, sync):
        seed(ledger, make_record("a"))
        ledger.available = False

        outcome = asyncio.run(sync.analyze_record("a"))

        assert isinstance(outcome.error, UnavailableError)
        assert ledger.commits == []

    def test_user_rejected_transition(self, ledger, sync):
        seed(ledger, make_record("a"))
        before = asyncio.run(sync.full_reload())
        ledger.reject_signatures = True

        outcome = asyncio.run(sync.archive_record("a"))

        assert not outcome.ok
        assert sync.status.current().message == "Transaction rejected by user"
        assert sync.snapshot is before
        assert sync.snapshot.find("a").status == RecordStatus.PENDING
        assert [entry.status for entry in sync.status.history][-2:] == [PENDING, ERROR]


class TestAvailability:
    def test_available(self, sync):
        assert asyncio.run(sync.check_availability()) is True
        assert sync.status.current().message == "FHE contract is available and ready!"

    def test_unavailable(self, ledger, sync):
        ledger.available = False
        assert asyncio.run(sync.check_availability()) is False
        assert sync.status.current().status == ERROR


class TestStatusExpiry:
    def test_success_status_hides_after_two_seconds(self, ledger, sync, clock):
        seed(ledger, make_record("a"))
        asyncio.run(sync.analyze_record("a"))

        clock.now += 1.9
        assert sync.status.current().visible
        clock.now += 0.2
        assert not sync.status.current().visible

    def test_error_status_hides_after_three_seconds(self, sync, clock):
        asyncio.run(sync.analyze_record("nope"))

        clock.now += 2.5
        assert sync.status.current().status == ERROR
        clock.now += 0.6
        assert not sync.status.current().visible


class TestOverlappingOperations:
    """Test operations interleaved on one event loop."""

    @pytest.fixture
    def held_ledger(self):
        return HeldIndexReadLedger()

    @pytest.fixture
    def held_sync(self, held_ledger):
        return RecordSynchronizer(
            ledger=held_ledger,
            session=AccountSession("0xABC"),
            cipher=EnvelopeCipher(),
            lifecycle_latency=NO_LATENCY,
        )

    def test_repair_survives_eviction_by_concurrent_create(self, held_ledger, held_sync):
        held_ledger.fail_keys.add(INDEX_KEY)
        orphans = [
            asyncio.run(held_sync.create_record("Wind-Cold", "Gui Zhi Tang")).record_id
            for _ in range(config.REPAIR_WINDOW)
        ]
        assert list(held_sync.unindexed_ids) == orphans

        async def interleave():
            held_ledger.read_held = asyncio.Event()
            release = held_ledger.release = asyncio.Event()
            repair = asyncio.create_task(held_sync.repair_index())
            await held_ledger.read_held.wait()

            # Fails its index append and evicts the oldest remembered orphan
            created = await held_sync.create_record("Damp-Heat", "Long Dan Xie Gan Tang")

            held_ledger.fail_keys.clear()
            release.set()
            return created, await repair

        created, added = asyncio.run(interleave())

        assert created.status == CreationStatus.CREATED_UNINDEXED
        assert added == orphans
        assert list(held_sync.unindexed_ids) == [created.record_id]
        assert len(held_sync.snapshot) == config.REPAIR_WINDOW

    def test_refreshing_until_last_reload_finishes(self, held_ledger, held_sync):
        async def interleave():
            held_ledger.read_held = asyncio.Event()
            release = held_ledger.release = asyncio.Event()
            slow = asyncio.create_task(held_sync.full_reload())
            await held_ledger.read_held.wait()

            await held_sync.full_reload()
            still_refreshing = held_sync.refreshing

            release.set()
            await slow
            return still_refreshing

        assert asyncio.run(interleave()) is True
        assert held_sync.refreshing is False
