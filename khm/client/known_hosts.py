"""
Reading and writing OpenSSH known_hosts files.
"""
import logging
import os
import tempfile
from pathlib import Path
from typing import Iterable, List, Union

from khm.schemas import SshKeyEntry

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def parse_known_hosts(text: str) -> List[SshKeyEntry]:
    """
    Parse known_hosts content leniently.

    A line is an entry when it has at least two whitespace-separated tokens:
    the first is the server, the rest (joined by single spaces) the public key.
    Comment lines and ``@cert-authority``/``@revoked`` marker lines are skipped,
    as is anything shorter.
    """
    entries = []
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith(("#", "@")):
            continue
        parts = stripped.split()
        if len(parts) < 2:
            continue
        entries.append(SshKeyEntry(server=parts[0], public_key=" ".join(parts[1:])))
    return entries


def read_known_hosts(path: PathLike) -> List[SshKeyEntry]:
    """Entries of a known_hosts file. A missing file has no entries."""
    path = Path(path).expanduser()
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except FileNotFoundError:
        logger.info(f"known_hosts file not found: {path}. Starting with empty key list.")
        return []

    entries = parse_known_hosts(text)
    logger.info(f"Read {len(entries)} keys from {path}")
    return entries


def render_known_hosts(entries: Iterable[SshKeyEntry]) -> str:
    """File content for ``entries``: one ``server public_key`` line each."""
    return "".join(f"{entry.server} {entry.public_key}\n" for entry in entries)


def write_known_hosts(path: PathLike, entries: Iterable[SshKeyEntry]) -> int:
    """
    Replace a known_hosts file with ``entries``.

    The content is written to a temporary file next to the target and moved
    into place, so readers never see a partial file. The previous file mode is
    kept.

    Returns:
        Number of lines written
    """
    path = Path(path).expanduser()
    entries = list(entries)
    content = render_known_hosts(entries)

    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        mode = path.stat().st_mode & 0o777
    except FileNotFoundError:
        mode = 0o644

    fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_name, mode)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise

    logger.info(f"Wrote {len(entries)} keys to {path}")
    return len(entries)
