import pytest

from debugloop.models.loop_config import LoopState, SourceKind
from debugloop.services.config_loader import ConfigLoadError, default_loop_config, load_loop_config


def test_load_yaml(tmp_path):
    path = tmp_path / "loop.yaml"
    path.write_text(
        "id: loop-checkout\n"
        "name: checkout\n"
        "state: fixing\n"
        "deployment:\n"
        "  target: github-pages\n"
        "  git_remote: https://github.com/acme/shop.git\n"
        "monitoring:\n"
        "  sources: [poll, sentry]\n"
        "  severity_threshold: medium\n"
        "safety:\n"
        "  max_iterations: 3\n"
        "  max_duration: 15\n",
        encoding="utf-8",
    )
    config = load_loop_config(str(path))

    assert config.id == "loop-checkout"
    assert config.state == LoopState.IDLE
    assert config.monitoring.sources == [SourceKind.POLL, SourceKind.SENTRY]
    assert config.monitoring.ci_repo_url == "https://github.com/acme/shop.git"
    assert config.safety.max_iterations == 3


def test_empty_file_gives_defaults(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("", encoding="utf-8")
    config = load_loop_config(str(path))
    assert config.fix.auto_apply is False


@pytest.mark.parametrize("content", [
    "- just\n- a list\n",
    "safety: {max_iterations: 0}\n",
    "deployment: [unclosed\n",
])
def test_invalid_configs(tmp_path, content):
    path = tmp_path / "bad.yaml"
    path.write_text(content, encoding="utf-8")
    with pytest.raises(ConfigLoadError):
        load_loop_config(str(path))


def test_missing_file(tmp_path):
    with pytest.raises(ConfigLoadError):
        load_loop_config(str(tmp_path / "nope.yaml"))


def test_default_config_is_frozen_except_state():
    config = default_loop_config(name="defaults")
    config.state = LoopState.DEPLOYING
    assert config.state == LoopState.DEPLOYING
    with pytest.raises(Exception):
        config.name = "renamed"
    with pytest.raises(Exception):
        config.safety.max_iterations = 99
