import os
import time

from sweep_quarantine import sweep

from rib.services.storage import QUARANTINE_DIR


def test_sweep_removes_only_stale_files(tmp_path):
    quarantine = tmp_path / QUARANTINE_DIR
    quarantine.mkdir()
    stale = quarantine / "stale"
    fresh = quarantine / "fresh"
    stale.write_bytes(b"x")
    fresh.write_bytes(b"y")
    now = time.time()
    os.utime(stale, (now - 7200, now - 7200))

    assert sweep(tmp_path, max_age=3600, now=now) == 1
    assert not stale.exists()
    assert fresh.exists()


def test_sweep_without_quarantine_dir(tmp_path):
    assert sweep(tmp_path, max_age=3600) == 0


def test_sweep_leaves_published_objects(tmp_path):
    published = tmp_path / "ab" / ("ab" + "0" * 62)
    published.parent.mkdir()
    published.write_bytes(b"z")
    os.utime(published, (0, 0))

    sweep(tmp_path, max_age=1)

    assert published.exists()
