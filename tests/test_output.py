import asyncio

import pytest

from stoke.errors import OutsideOutputError
from stoke.output import FilesWritten, OutputWriter


def test_write_records_ledger_entries(tmp_path):
    ledger = FilesWritten()
    writer = OutputWriter(tmp_path / "out", ledger)
    target = writer.resolve("posts/a/index.html")
    writer.write(target, "<p>a</p>", "html", "posts")
    writer.write(target, "<p>b</p>", "html", "layout")

    assert target.read_text(encoding="utf-8") == "<p>b</p>"
    entry = ledger.get("posts/a/index.html")
    assert entry.kind == "html"
    assert [source.split(" ")[0] for source in entry.source] == ["posts", "layout"]
    assert entry.created <= entry.modified
    assert "posts/a/index.html" in ledger
    assert len(ledger) == 1


def test_writes_outside_root_are_refused(tmp_path):
    ledger = FilesWritten()
    writer = OutputWriter(tmp_path / "out", ledger)
    with pytest.raises(OutsideOutputError):
        writer.resolve("../escape.html")
    with pytest.raises(OutsideOutputError):
        writer.write(tmp_path / "elsewhere.txt", "x", "json", "t")
    with pytest.raises(OutsideOutputError):
        writer.mkdir(tmp_path / "out" / ".." / "sneaky")
    assert not (tmp_path / "elsewhere.txt").exists()
    assert len(ledger) == 0
    # a leading slash is relative to the output root
    assert writer.resolve("/version.json") == (tmp_path / "out" / "version.json").resolve()


def test_symlink_escape_is_refused(tmp_path):
    out = tmp_path / "out"
    out.mkdir()
    outside = tmp_path / "outside"
    outside.mkdir()
    (out / "link").symlink_to(outside, target_is_directory=True)
    writer = OutputWriter(out, FilesWritten())
    with pytest.raises(OutsideOutputError):
        writer.write(out / "link" / "x.html", "x", "html", "t")


def test_async_write_and_snapshot_is_read_only(tmp_path):
    ledger = FilesWritten()
    writer = OutputWriter(tmp_path / "out", ledger)
    asyncio.run(writer.write_async(tmp_path / "out" / "data.json", "{}", "json", "hook"))
    assert (tmp_path / "out" / "data.json").read_text(encoding="utf-8") == "{}"

    snapshot = ledger.snapshot()
    assert snapshot["data.json"].kind == "json"
    with pytest.raises(TypeError):
        snapshot["other"] = None
    with pytest.raises(AttributeError):
        snapshot["data.json"].kind = "html"

    writer.write(tmp_path / "out" / "data.json", "[]", "json", "again")
    assert len(snapshot["data.json"].source) == 1
    assert len(ledger.snapshot()["data.json"].source) == 2
