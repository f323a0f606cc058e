import pytest

from khm.client.api import ApiClientError, parse_basic_auth
from khm.client.known_hosts import read_known_hosts
from khm.client.sync import SyncError, sync_known_hosts


def write_lines(path, *entries):
    path.write_text("".join(f"{e.server} {e.public_key}\n" for e in entries))


def test_parse_basic_auth():
    assert parse_basic_auth("") is None
    assert parse_basic_auth("admin:s3cr:et") == ("admin", "s3cr:et")
    with pytest.raises(ValueError):
        parse_basic_auth("admin")


def test_two_machines_converge(api, tmp_path, entry):
    laptop = tmp_path / "laptop_known_hosts"
    desktop = tmp_path / "desktop_known_hosts"
    write_lines(laptop, entry("alpha.example.com"))
    write_lines(desktop, entry("beta.example.com"))

    stats = sync_known_hosts(laptop, "default", api, in_place=True)
    assert stats.sent == 1
    assert stats.inserted == 1
    assert stats.written == 1

    stats = sync_known_hosts(desktop, "default", api, in_place=True)
    assert stats.inserted == 1
    assert stats.written == 2

    stats = sync_known_hosts(laptop, "default", api, in_place=True)
    assert stats.inserted == 0
    assert stats.unchanged == 2
    assert read_known_hosts(laptop) == read_known_hosts(desktop)
    assert {e.server for e in read_known_hosts(laptop)} == {"alpha.example.com", "beta.example.com"}


def test_without_in_place_file_is_untouched(api, tmp_path, entry):
    path = tmp_path / "known_hosts"
    path.write_text("# comment\n")
    api.submit_keys("default", [entry("alpha.example.com")])

    stats = sync_known_hosts(path, "default", api)
    assert stats.sent == 0
    assert stats.written == 0
    assert path.read_text() == "# comment\n"


def test_deprecated_keys_are_not_written(api, tmp_path, entry):
    path = tmp_path / "known_hosts"
    write_lines(path, entry("alpha.example.com"), entry("beta.example.com"))
    sync_known_hosts(path, "default", api)

    api.deprecate("default", "alpha.example.com")
    stats = sync_known_hosts(path, "default", api, in_place=True)

    assert stats.ignored_deprecated == 1
    assert stats.fetched == 2
    assert stats.deprecated_skipped == 1
    assert [e.server for e in read_known_hosts(path)] == ["beta.example.com"]


def test_missing_file_receives_flow(api, tmp_path, entry):
    api.submit_keys("work", [entry("alpha.example.com")])
    path = tmp_path / "new" / "known_hosts"

    stats = sync_known_hosts(path, "work", api, in_place=True)
    assert stats.sent == 0
    assert [e.server for e in read_known_hosts(path)] == ["alpha.example.com"]


def test_failure_leaves_file_untouched(api, tmp_path, entry):
    path = tmp_path / "known_hosts"
    write_lines(path, entry("alpha.example.com"))
    before = path.read_text()

    with pytest.raises(SyncError):
        sync_known_hosts(path, "secret", api, in_place=True)
    assert path.read_text() == before

    path.write_text(before + "broken.example.com ssh-ed25519 not!valid\n")
    with pytest.raises(SyncError):
        sync_known_hosts(path, "default", api, in_place=True)
    assert "broken.example.com" in path.read_text()


def test_api_errors_carry_status(api):
    with pytest.raises(ApiClientError) as excinfo:
        api.get_keys("secret")
    assert excinfo.value.status_code == 403
    assert "Flow ID not allowed" in str(excinfo.value)


def test_api_lifecycle_round_trip(api, entry):
    api.submit_keys("home", [entry("alpha.example.com"), entry("beta.example.com")])

    assert api.list_flows() == ["default", "work", "home"]
    assert api.bulk_deprecate("home", ["alpha.example.com", "beta.example.com"]).affected_count == 2
    assert api.get_keys("home") == []
    assert len(api.get_keys("home", include_deprecated=True)) == 2
    assert api.bulk_restore("home", ["alpha.example.com"]).affected_count == 1
    assert api.restore("home", "beta.example.com").affected_count == 1
    assert api.statistics("home").active == 2
    assert api.delete("home", "alpha.example.com").records_removed == 1
    assert [e.server for e in api.get_keys("home")] == ["beta.example.com"]


def test_round_trip_against_empty_flow(api, tmp_path, entry):
    path = tmp_path / "known_hosts"
    original = [entry("alpha.example.com"), entry("beta.example.com")]
    write_lines(path, *original)

    sync_known_hosts(path, "home", api, in_place=True)
    assert read_known_hosts(path) == original

    stats = sync_known_hosts(path, "home", api, in_place=True)
    assert stats.inserted == 0
    assert read_known_hosts(path) == original
