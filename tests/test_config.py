import pytest

from stoke.config import DEFAULT_CONFIG, load_config
from stoke.engine import SiteEngine
from stoke.errors import ConfigurationError


def test_defaults_without_config_file(tmp_path):
    config = load_config(tmp_path)
    assert config == DEFAULT_CONFIG
    config["allowed_modules"].append("os")
    assert "os" not in DEFAULT_CONFIG["allowed_modules"]


def test_config_file_overrides_defaults(tmp_path):
    (tmp_path / "stoke.yaml").write_text(
        "input_dir: site\nliveness_interval: 1\nsite_name: Demo\n", encoding="utf-8"
    )
    config = load_config(tmp_path)
    assert config["input_dir"] == "site"
    assert config["liveness_interval"] == 1.0
    assert config["site_name"] == "Demo"
    assert config["output_dir"] == "output"


@pytest.mark.parametrize(
    "text",
    [
        "input_dir: [unclosed\n",
        "max_followup_passes: -1\n",
        "liveness_interval: 0\n",
        "allowed_modules: json\n",
    ],
)
def test_invalid_config_raises(tmp_path, text):
    (tmp_path / "stoke.yaml").write_text(text, encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_config(tmp_path)


def test_engine_from_config_resolves_directories(tmp_path):
    (tmp_path / "stoke.yaml").write_text("data_dir: content\n", encoding="utf-8")
    engine = SiteEngine.from_config(tmp_path)
    assert engine.input_dir == (tmp_path / "templates").resolve()
    assert engine.data_dir == (tmp_path / "content").resolve()
    assert engine.output_dir == (tmp_path / "output").resolve()
    assert engine.max_followup_passes == 3
