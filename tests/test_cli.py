"""Tests for the command-line interface."""

import json

import pytest

from prodcrawl.cli import main
from prodcrawl.frontier import open_frontier
from prodcrawl.output_writer import annotate_with_provenance


@pytest.fixture
def dirs(tmp_path):
    tasks_dir = tmp_path / "tasksConfig"
    output_dir = tmp_path / "output"
    flags = ["--log-level", "ERROR", "--tasks-dir", str(tasks_dir), "--output-dir", str(output_dir)]
    return flags, tasks_dir, output_dir


class TestCli:
    """Test cases for the prodcrawl CLI."""

    def test_create_task(self, dirs, capsys):
        flags, tasks_dir, _ = dirs

        main(flags + ["create-task", "https://shop.example/", "--max-accepted", "10", "--selector", ".sku"])

        task_file = tasks_dir / "shop.example" / "shop.example.json"
        data = json.loads(task_file.read_text())
        assert data["max_accepted"] == 10
        assert data["selector_rules"] == [".sku"]
        assert "Created task shop.example" in capsys.readouterr().out

        store = open_frontier("shop.example", str(tasks_dir))
        try:
            assert store.counts()["pending"] == 1
        finally:
            store.close()

    def test_create_existing_task_fails(self, dirs, capsys):
        flags, _, _ = dirs
        main(flags + ["create-task", "https://shop.example/"])

        with pytest.raises(SystemExit) as exc_info:
            main(flags + ["create-task", "https://shop.example/"])
        assert exc_info.value.code == 1
        assert "already exists" in capsys.readouterr().out

    def test_list_tasks(self, dirs, capsys):
        flags, _, _ = dirs
        main(flags + ["create-task", "https://a.example/"])
        main(flags + ["create-task", "https://b.example/"])
        capsys.readouterr()

        main(flags + ["list-tasks"])

        out = capsys.readouterr().out
        assert "a.example\tstatic" in out
        assert "b.example\tstatic" in out

    def test_status(self, dirs, capsys):
        flags, _, _ = dirs
        main(flags + ["create-task", "https://a.example/"])
        capsys.readouterr()

        main(flags + ["status", "a.example"])

        status = json.loads(capsys.readouterr().out)
        assert status["status"] == "idle"
        assert status["pending"] == 1

    def test_status_unknown_task(self, dirs):
        flags, _, _ = dirs
        with pytest.raises(SystemExit) as exc_info:
            main(flags + ["status", "nope.example"])
        assert exc_info.value.code == 1

    def test_start_unknown_task_exits_nonzero(self, dirs, capsys):
        flags, _, _ = dirs
        with pytest.raises(SystemExit) as exc_info:
            main(flags + ["start-task", "nope.example"])

        assert exc_info.value.code == 1
        assert "nope.example: failed" in capsys.readouterr().out

    def test_generate_sitemap(self, dirs, capsys):
        flags, _, output_dir = dirs
        site = output_dir / "a.example"
        site.mkdir(parents=True)
        (site / "0000000.txt").write_text(annotate_with_provenance("<head></head>", "https://a.example/p"))

        main(flags + ["generate-sitemap", "a.example"])
        assert (site / "sitemap.xml").exists()

        main(flags + ["generate-sitemap", "--all"])
        assert "a.example" in capsys.readouterr().out

    def test_generate_sitemap_needs_scope(self, dirs):
        flags, _, _ = dirs
        with pytest.raises(SystemExit):
            main(flags + ["generate-sitemap"])
