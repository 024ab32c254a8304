import json

from click.testing import CliRunner

from stoke import __version__
from stoke.cli import cli


def _project(tmp_path):
    project = tmp_path / "site"
    (project / "templates").mkdir(parents=True)
    (project / "data").mkdir()
    (project / "public" / "css").mkdir(parents=True)
    (project / "public" / "css" / "site.css").write_text("body {}", encoding="utf-8")
    (project / "templates" / "index.jinja").write_text(
        "---\ngenerate: /\n---\n<p>{{ global_data.name }}</p>\n", encoding="utf-8"
    )
    (project / "templates" / "preGenerate.jinja").write_text(
        "<script generate>\n"
        "def generate(ctx):\n"
        '    return {"global": {"name": "Stoke"}, "cache": {"seen": {"data": 1}}}\n'
        "</script>\n",
        encoding="utf-8",
    )
    return project


def test_build_writes_site_public_files_and_cache(tmp_path):
    project = _project(tmp_path)
    (project / "output").mkdir()
    (project / "output" / "stale.html").write_text("old", encoding="utf-8")

    result = CliRunner().invoke(cli, ["build", "--root", str(project)], catch_exceptions=False)

    assert result.exit_code == 0, result.output
    assert (project / "output" / "index.html").read_text(encoding="utf-8") == "<p>Stoke</p>"
    assert (project / "output" / "css" / "site.css").exists()
    assert not (project / "output" / "stale.html").exists()
    cache = json.loads((project / "cache" / "cache.json").read_text(encoding="utf-8"))
    assert cache == {"preGenerate": {"seen": {"data": 1}}}
    assert "Finished with 0 errors" in result.output


def test_build_exits_nonzero_when_errors_are_reported(tmp_path):
    project = _project(tmp_path)
    (project / "templates" / "broken.jinja").write_text(
        "---\ngenerate: /broken\n---\n{{ global_data.missing }}\n", encoding="utf-8"
    )
    result = CliRunner().invoke(cli, ["build", "--root", str(project)])
    assert result.exit_code == 1
    assert (project / "output" / "index.html").exists()
    # the cache is flushed even when the build failed
    assert (project / "cache" / "cache.json").exists()


def test_directory_options_override_config(tmp_path):
    project = _project(tmp_path)
    (project / "stoke.yaml").write_text("output_dir: ignored\nclear_output: false\n", encoding="utf-8")
    custom = tmp_path / "public_html"

    result = CliRunner().invoke(
        cli, ["build", "--root", str(project), "--output", str(custom), "-v"]
    )

    assert result.exit_code == 0, result.output
    assert (custom / "index.html").exists()
    assert not (project / "ignored").exists()


def test_invalid_config_is_a_usage_error(tmp_path):
    project = _project(tmp_path)
    (project / "stoke.yaml").write_text("liveness_interval: soon\n", encoding="utf-8")
    result = CliRunner().invoke(cli, ["build", "--root", str(project)])
    assert result.exit_code != 0
    assert "liveness_interval" in result.output or "invalid" in result.output


def test_version_option():
    result = CliRunner().invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_watch_builds_then_stops_on_interrupt(monkeypatch, tmp_path):
    project = _project(tmp_path)
    calls = []

    class DummyWatcher:
        def __init__(self, input_dir, data_dir, loop):
            calls.append("init")

        def start(self):
            calls.append("start")

        def stop(self):
            calls.append("stop")

        @property
        def queue(self):
            raise KeyboardInterrupt

    monkeypatch.setattr("stoke.cli.SiteWatcher", DummyWatcher)
    result = CliRunner().invoke(cli, ["watch", "--root", str(project)])

    assert result.exit_code == 0, result.output
    assert calls == ["init", "start", "stop"]
    assert (project / "output" / "index.html").exists()
    assert (project / "cache" / "cache.json").exists()
