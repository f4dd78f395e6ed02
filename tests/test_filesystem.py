#tests\test_filesystem.py

"""Test filesystem helpers and the deployment copy filter."""

import sys
from pathlib import Path

import pytest

from deploy_engine.filesystem import FileSystem
from deploy_engine.orchestrator.deployment_orchestrator import is_excluded_from_copy

from tests.conftest import write_file


@pytest.fixture
def fs():
    return FileSystem()


class TestCopyFilter:
    """Test backup payloads are kept out of the live tree."""

    def test_db_folders_and_backups_skipped(self, fs, tmp_path):
        source = tmp_path / "src"
        write_file(source / "Web.config", b"<configuration />")
        write_file(source / "bin" / "app.dll", b"dll")
        write_file(source / "db" / "app.backup", b"PGDMP")
        write_file(source / "nested" / "db" / "other.txt", b"x")
        write_file(source / "extra.BAK", b"TAPE")

        copied = fs.copy_directory_with_filter(source, tmp_path / "dst", is_excluded_from_copy)

        files = sorted(p.relative_to(tmp_path / "dst").as_posix() for p in (tmp_path / "dst").rglob("*") if p.is_file())
        assert files == ["Web.config", "bin/app.dll"]
        assert copied == 2

    def test_filter_rules(self, tmp_path):
        (tmp_path / "DB").mkdir()
        (tmp_path / "database").mkdir()

        assert is_excluded_from_copy(tmp_path / "DB")
        assert not is_excluded_from_copy(tmp_path / "database")
        assert is_excluded_from_copy(Path("x.backup"))
        assert not is_excluded_from_copy(Path("x.dll"))


class TestFileSystem:
    def test_list_files_recursive(self, fs, tmp_path):
        write_file(tmp_path / "a.zip")
        write_file(tmp_path / "sub" / "b.zip")
        write_file(tmp_path / "sub" / "c.txt")

        assert [p.name for p in fs.list_files(tmp_path, "*.zip")] == ["a.zip"]
        assert sorted(p.name for p in fs.list_files(tmp_path, "*.zip", recursive=True)) == ["a.zip", "b.zip"]

    def test_list_missing_directory(self, fs, tmp_path):
        assert fs.list_files(tmp_path / "missing") == []
        assert fs.list_directories(tmp_path / "missing") == []

    def test_copy_file_with_progress(self, fs, tmp_path):
        source = write_file(tmp_path / "big.bin", b"x" * 3000)
        reported = []

        fs.copy_file_with_progress(source, tmp_path / "out" / "big.bin", reported.append)

        assert (tmp_path / "out" / "big.bin").read_bytes() == b"x" * 3000
        assert reported[-1] == 100.0

    def test_copy_file_refuses_overwrite(self, fs, tmp_path):
        source = write_file(tmp_path / "a.txt", b"a")
        write_file(tmp_path / "b.txt", b"b")

        with pytest.raises(FileExistsError):
            fs.copy_file(source, tmp_path / "b.txt", overwrite=False)

    def test_move_file_replaces_destination(self, fs, tmp_path):
        partial = write_file(tmp_path / "a.zip.partial", b"new")
        write_file(tmp_path / "a.zip", b"old")

        fs.move_file(partial, tmp_path / "a.zip")

        assert (tmp_path / "a.zip").read_bytes() == b"new"
        assert not partial.exists()

    def test_delete_missing_file(self, fs, tmp_path):
        fs.delete_file(tmp_path / "gone.txt")

    @pytest.mark.skipif(sys.platform == "win32", reason="symlinks need elevation on Windows")
    def test_symbolic_link_replaced(self, fs, tmp_path):
        first = write_file(tmp_path / "v1" / "app.dll")
        second = write_file(tmp_path / "v2" / "app.dll")

        fs.create_symbolic_link(tmp_path / "current", first.parent)
        link = fs.create_symbolic_link(tmp_path / "current", second.parent)

        assert link.resolve() == second.parent.resolve()
