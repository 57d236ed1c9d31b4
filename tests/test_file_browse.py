from __future__ import annotations

from pathlib import Path

from neonbridge.connection import browse_directory


def test_listing_puts_parent_then_directories_then_files(tmp_path: Path) -> None:
    (tmp_path / "A").mkdir()
    (tmp_path / "b.txt").write_text("b", encoding="utf-8")
    (tmp_path / "a.txt").write_text("a", encoding="utf-8")
    (tmp_path / ".git").mkdir()
    (tmp_path / ".env").write_text("SECRET=1", encoding="utf-8")

    result = browse_directory(request_id="fb1", target=tmp_path)

    assert result.error is None
    assert result.path == str(tmp_path)
    assert [entry.name for entry in result.entries] == ["..", "A", "a.txt", "b.txt"]
    assert result.entries[0].path == str(tmp_path.parent)
    assert [entry.is_directory for entry in result.entries] == [True, True, False, False]
    assert result.entries[1].path == str(tmp_path / "A")


def test_root_has_no_parent_entry() -> None:
    result = browse_directory(request_id="fb2", target="/")

    assert all(entry.name != ".." for entry in result.entries)


def test_missing_directory_reports_error_without_entries(tmp_path: Path) -> None:
    result = browse_directory(request_id="fb3", target=tmp_path / "missing")

    assert result.entries == []
    assert result.error is not None
    assert "missing" in result.error


def test_listing_is_capped(tmp_path: Path) -> None:
    for index in range(5):
        (tmp_path / f"f{index}.txt").write_text("", encoding="utf-8")

    result = browse_directory(request_id="fb4", target=tmp_path, max_entries=3)

    assert len(result.entries) == 3


def test_wire_payload_shape(tmp_path: Path) -> None:
    (tmp_path / "notes.md").write_text("", encoding="utf-8")

    payload = browse_directory(request_id="fb5", target=tmp_path).to_dict()

    assert payload["type"] == "file_browse_result"
    assert payload["request_id"] == "fb5"
    assert payload["entries"][-1] == {
        "name": "notes.md",
        "path": str(tmp_path / "notes.md"),
        "isDirectory": False,
    }
    assert "error" not in payload
