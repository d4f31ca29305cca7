"""
On-disk element snapshots for createOrReplace.

Before createOrReplace deletes the elements it is about to replace, their
full documents are written to

    <DATA_DIR>/<org>/<project>/<branch>/PUT-backup-elements-<ts>.json

The file is discarded once the replacement commits. If the replacement
fails the file stays for manual recovery; nothing replays it
automatically.

Directory creation and pruning tolerate concurrent callers on the same
project: ``makedirs(exist_ok=True)`` and "remove if present / if empty".
"""

from __future__ import annotations

import json
import logging
import os
import time

logger = logging.getLogger(__name__)

SNAPSHOT_PREFIX = "PUT-backup-elements-"


class SnapshotStore:
    def __init__(self, data_dir: str) -> None:
        self.data_dir = os.path.abspath(data_dir)

    def directory_for(self, org: str, project: str, branch: str) -> str:
        return os.path.join(self.data_dir, org, project, branch)

    def write(self, org: str, project: str, branch: str, documents: list[dict], ts: int | None = None) -> str:
        """Write ``documents`` to a new snapshot file and return its path."""
        directory = self.directory_for(org, project, branch)
        os.makedirs(directory, exist_ok=True)
        if ts is None:
            ts = time.time_ns() // 1000
        path = os.path.join(directory, f"{SNAPSHOT_PREFIX}{ts}.json")
        with open(path, "w", encoding="utf-8") as fh:
            json.dump(documents, fh, default=str)
        logger.info("Wrote snapshot of %d element(s) to %s", len(documents), path)
        return path

    def discard(self, path: str) -> None:
        """Delete a snapshot and prune the branch/project/org directories if empty."""
        try:
            os.remove(path)
        except FileNotFoundError:
            pass

        directory = os.path.dirname(os.path.abspath(path))
        while directory.startswith(self.data_dir + os.sep):
            try:
                os.rmdir(directory)
            except FileNotFoundError:
                pass
            except OSError:
                # Not empty: another snapshot or unrelated data still lives here
                break
            directory = os.path.dirname(directory)
        logger.debug("Discarded snapshot %s", path)
