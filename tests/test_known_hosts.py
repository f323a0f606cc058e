import os
import stat

from khm.client.known_hosts import (
    parse_known_hosts,
    read_known_hosts,
    render_known_hosts,
    write_known_hosts,
)
from khm.schemas import SshKeyEntry

SAMPLE = """\
# managed by hand
alpha.example.com ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIalpha
beta.example.com,10.0.0.2 ssh-rsa AAAAB3NzaC1yc2EAAAADAQABAAABAQbeta   user@beta

@cert-authority *.example.com ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIca
lonely-token
[gamma.example.com]:2222 ecdsa-sha2-nistp256 AAAAE2VjZHNhLXNoYTItbmlzdHAyNTY=
"""


def test_parse_skips_comments_markers_and_short_lines():
    entries = parse_known_hosts(SAMPLE)
    assert [e.server for e in entries] == [
        "alpha.example.com",
        "beta.example.com,10.0.0.2",
        "[gamma.example.com]:2222",
    ]
    assert entries[1].public_key == "ssh-rsa AAAAB3NzaC1yc2EAAAADAQABAAABAQbeta user@beta"
    assert not any(e.deprecated for e in entries)


def test_missing_file_reads_as_empty(tmp_path):
    assert read_known_hosts(tmp_path / "does-not-exist") == []


def test_render_one_line_per_entry():
    entries = [
        SshKeyEntry(server="alpha.example.com", public_key="ssh-ed25519 AAAAalpha"),
        SshKeyEntry(server="beta.example.com", public_key="ssh-ed25519 AAAAbeta"),
    ]
    assert render_known_hosts(entries) == (
        "alpha.example.com ssh-ed25519 AAAAalpha\n"
        "beta.example.com ssh-ed25519 AAAAbeta\n"
    )
    assert render_known_hosts([]) == ""


def test_write_replaces_file_and_keeps_mode(tmp_path):
    path = tmp_path / "known_hosts"
    path.write_text(SAMPLE)
    os.chmod(path, 0o600)

    entries = [SshKeyEntry(server="alpha.example.com", public_key="ssh-ed25519 AAAAalpha")]
    assert write_known_hosts(path, entries) == 1

    assert read_known_hosts(path) == entries
    assert stat.S_IMODE(path.stat().st_mode) == 0o600
    assert [p.name for p in tmp_path.iterdir()] == ["known_hosts"]


def test_write_creates_missing_file(tmp_path):
    path = tmp_path / "ssh" / "known_hosts"
    assert write_known_hosts(path, []) == 0
    assert path.read_text() == ""
