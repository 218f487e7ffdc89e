"""Snapshot serialization and atomic publication of the target file."""

import json
import os
import stat
import sys
import tempfile
from pathlib import Path
from typing import Any, Dict, List, TextIO


def render_snapshot(groups: List[Dict[str, Any]]) -> str:
    """Serialize target groups as a single-line JSON list."""
    return json.dumps(groups)


def _target_mode(path: Path) -> int:
    """Mode for the published file: keep the existing one, else honour the umask."""
    try:
        return stat.S_IMODE(path.stat().st_mode)
    except FileNotFoundError:
        umask = os.umask(0)
        os.umask(umask)
        return 0o666 & ~umask


def atomic_write(path: str | Path, data: str) -> None:
    """Replace *path* with *data* so readers never see a partial file.

    The temp file lives next to the target so ``os.replace`` stays on one
    filesystem. It is removed on every failure path.
    """
    path = Path(path)
    mode = _target_mode(path)
    fd, tmp_path = tempfile.mkstemp(
        dir=path.parent, prefix=f".{path.name}.", suffix=".tmp",
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            # mkstemp creates 0600; the scraper usually runs as another user
            os.fchmod(f.fileno(), mode)
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        Path(tmp_path).unlink(missing_ok=True)
        raise


class SnapshotPublisher:
    """Writes snapshots to stdout or atomically to a file.

    Publishing is best-effort: an I/O error is reported on stderr and
    counted in ``failures``, and the next publication is attempted as usual.
    """

    def __init__(self, output_path: str | Path | None = None, stream: TextIO | None = None):
        self.output_path = Path(output_path) if output_path else None
        self._stream = stream
        self.failures = 0

    def publish(self, groups: List[Dict[str, Any]]) -> bool:
        output = render_snapshot(groups)
        try:
            if self.output_path is not None:
                atomic_write(self.output_path, output)
            else:
                stream = self._stream or sys.stdout
                print(output, file=stream, flush=True)
        except OSError as e:
            self.failures += 1
            print(f"[publish] write failed: {e}", file=sys.stderr)
            return False
        return True
