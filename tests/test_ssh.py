import pytest

from khm.core.ssh import is_valid_ssh_key


@pytest.mark.parametrize("key", [
    "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIOMqqnkVzrm0SdG6UOoqKLsabgH5C9okWi0dh2l9GKJl",
    "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIOMqqnkVzrm0SdG6UOoqKLsabgH5C9okWi0dh2l9GKJl user@laptop",
    "ssh-rsa AAAAB3NzaC1yc2EAAAADAQABAAABAQC7vbqajDhA==",
    "ssh-dss AAAAB3NzaC1kc3MAAACBAP1/U4Ed",
    "ecdsa-sha2-nistp256 AAAAE2VjZHNhLXNoYTItbmlzdHAyNTYAAAAIbmlzdHAyNTY=",
    "ecdsa-sha2-nistp521 AAAAE2VjZHNhLXNoYTItbmlzdHA1MjE=",
])
def test_accepts_supported_keys(key):
    assert is_valid_ssh_key(key)


@pytest.mark.parametrize("key", [
    "",
    "ssh-ed25519",
    "ssh-ed25519 BBBBC3NzaC1lZDI1NTE5",
    "ssh-ed25519 AAAA$$$$",
    "ecdsa-sha2-nistp999 AAAAE2VjZHNh",
    "sk-ssh-ed25519@openssh.com AAAAGnNrLXNzaC1lZDI1NTE5QG9wZW5zc2guY29t",
    "not a key",
    " ssh-ed25519 AAAAC3NzaC1lZDI1NTE5",
])
def test_rejects_malformed_keys(key):
    assert not is_valid_ssh_key(key)
