import pytest
from sqlalchemy import func, select

from conftest import read_flows, submit
from khm.core.exceptions import InvalidKeyFormatError
from khm.models.keys import FlowAssociation
from khm.schemas import SshKeyEntry
from khm.services.lifecycle import LifecycleService
from khm.services.reconciliation import ReconciliationService, SubmissionStats, chunked


def test_chunked():
    assert [list(c) for c in chunked([1, 2, 3, 4, 5], 2)] == [[1, 2], [3, 4], [5]]
    assert list(chunked([], 3)) == []


def test_total_counts_new_and_unchanged_only():
    stats = SubmissionStats(received=5, inserted=2, unchanged=1, ignored_deprecated=2)
    assert stats.total == 3


def test_first_submission_inserts_everything(run_db, entry):
    entries = [entry("alpha.example.com"), entry("beta.example.com"), entry("gamma.example.com")]

    async def scenario(database):
        stats = await submit(database, "default", entries)
        return stats, await read_flows(database)

    stats, flows = run_db(scenario)
    assert stats.received == 3
    assert stats.inserted == 3
    assert stats.unchanged == 0
    assert stats.associated == 3
    assert [e.server for e in flows["default"]] == [
        "alpha.example.com", "beta.example.com", "gamma.example.com"
    ]
    assert not any(e.deprecated for e in flows["default"])


def test_resubmission_is_idempotent(run_db, entry):
    entries = [entry("alpha.example.com"), entry("beta.example.com")]

    async def scenario(database):
        await submit(database, "default", entries)
        stats = await submit(database, "default", entries)
        return stats, await read_flows(database)

    stats, flows = run_db(scenario)
    assert stats.inserted == 0
    assert stats.unchanged == 2
    assert stats.associated == 0
    assert stats.total == 2
    assert len(flows["default"]) == 2


def test_duplicates_within_a_batch_count_once(run_db, entry):
    duplicate = entry("alpha.example.com")

    async def scenario(database):
        stats = await submit(database, "default", [duplicate, duplicate, duplicate])
        return stats, await read_flows(database)

    stats, flows = run_db(scenario)
    assert stats.received == 3
    assert stats.inserted == 1
    assert stats.total == 1
    assert len(flows["default"]) == 1


def test_key_is_shared_between_flows(run_db, entry):
    shared = entry("alpha.example.com")

    async def scenario(database):
        await submit(database, "default", [shared])
        stats = await submit(database, "work", [shared])
        return stats, await read_flows(database)

    stats, flows = run_db(scenario)
    assert stats.inserted == 0
    assert stats.unchanged == 1
    assert stats.associated == 1
    assert flows["default"] == flows["work"]


def test_multiple_keys_per_host(run_db, make_key):
    entries = [
        SshKeyEntry(server="alpha.example.com", public_key=make_key("one")),
        SshKeyEntry(server="alpha.example.com", public_key=make_key("two", "ssh-rsa")),
    ]

    async def scenario(database):
        await submit(database, "default", entries)
        return await read_flows(database)

    flows = run_db(scenario)
    assert {e.public_key for e in flows["default"]} == {e.public_key for e in entries}


def test_deprecated_key_stays_deprecated(run_db, entry):
    old = entry("alpha.example.com")
    fresh = entry("beta.example.com")

    async def scenario(database):
        await submit(database, "default", [old])
        async with database.session() as db:
            await LifecycleService(db).deprecate("alpha.example.com", "default")
            await db.commit()
        stats = await submit(database, "default", [old, fresh])
        return stats, await read_flows(database)

    stats, flows = run_db(scenario)
    assert stats.received == 2
    assert stats.inserted == 1
    assert stats.unchanged == 0
    assert stats.ignored_deprecated == 1
    assert stats.total == 1
    by_server = {e.server: e for e in flows["default"]}
    assert by_server["alpha.example.com"].deprecated is True
    assert by_server["beta.example.com"].deprecated is False


def test_invalid_key_rejects_whole_batch(run_db, entry):
    good = entry("alpha.example.com")
    bad = SshKeyEntry(server="broken.example.com", public_key="ssh-ed25519 not-base64!")

    async def scenario(database):
        with pytest.raises(InvalidKeyFormatError) as excinfo:
            await submit(database, "default", [good, bad])
        return excinfo.value, await read_flows(database)

    error, flows = run_db(scenario)
    assert error.server == "broken.example.com"
    assert "default" not in flows


def test_empty_submission(run_db):
    async def scenario(database):
        return await submit(database, "default", [])

    stats = run_db(scenario)
    assert stats.received == 0
    assert stats.total == 0


def test_deprecated_key_is_not_associated_with_another_flow(run_db, entry):
    old = entry("alpha.example.com")

    async def scenario(database):
        await submit(database, "default", [old])
        async with database.session() as db:
            await LifecycleService(db).deprecate("alpha.example.com", "default")
            await db.commit()
        stats = await submit(database, "work", [old])
        return stats, await read_flows(database)

    stats, flows = run_db(scenario)
    assert stats.ignored_deprecated == 1
    assert stats.associated == 0
    assert stats.total == 0
    assert "work" not in flows
    assert flows["default"][0].deprecated is True


def test_association_added_concurrently_is_skipped(run_db, entry, monkeypatch):
    shared = entry("alpha.example.com")

    async def stale_read(self, flow, key_ids):
        # Another submission committed the association after this one looked
        return set()

    async def scenario(database):
        await submit(database, "default", [shared])
        monkeypatch.setattr(ReconciliationService, "_associated_ids", stale_read)
        stats = await submit(database, "default", [shared])
        async with database.session() as db:
            rows = (await db.execute(
                select(func.count()).select_from(FlowAssociation).where(FlowAssociation.name == "default")
            )).scalar_one()
        return stats, rows

    stats, rows = run_db(scenario)
    assert stats.unchanged == 1
    assert stats.associated == 0
    assert rows == 1
