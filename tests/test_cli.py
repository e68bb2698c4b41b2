from pathlib import Path

import pytest
from click.testing import CliRunner

from mediagen import cli
from mediagen.errors import UpstreamError
from mediagen.providers.fal import FalProvider
from mediagen.providers.wavespeed import WavespeedProvider

ENV = {
    "fal": ("FAL_KEY", "FAL_PATH", "FAL_SMOKE_TEST"),
    "wavespeed": ("WAVESPEED_KEY", "WAVESPEED_PATH", "WAVESPEED_SMOKE_TEST"),
    "venice": ("VENICE_API_TOKEN", "VENICE_PATH", "VENICE_SMOKE_TEST"),
    "replicate": ("REPLICATE_API_TOKEN", "REPLICATE_OUTPUT_DIR", "REPLICATE_SMOKE_TEST"),
}


def smoke_env(provider: str, out: Path) -> dict:
    key, path, smoke = ENV[provider]
    return {key: None, path: str(out), smoke: "1"}


def live_env(provider: str, out: Path) -> dict:
    key, path, smoke = ENV[provider]
    return {key: "secret", path: str(out), smoke: None}


@pytest.fixture
def runner():
    return CliRunner()


@pytest.mark.parametrize(
    "provider, expected",
    [
        ("fal", "mock-fal-output.png"),
        ("wavespeed", "mock-wavespeed-output.png"),
        ("venice", "venice_*.png"),
        ("replicate", "mock-replicate-output.webp"),
    ],
)
def test_smoke_run_per_provider(runner, tmp_path: Path, provider, expected):
    result = runner.invoke(cli.main, [provider, "--prompt", "smoke test"], env=smoke_env(provider, tmp_path))
    assert result.exit_code == 0, result.output
    assert "Generation complete! (mock)" in result.output
    assert list(tmp_path.glob(expected))


def test_missing_credential_exits_1(runner, tmp_path: Path):
    env = {"FAL_KEY": None, "FAL_SMOKE_TEST": None, "FAL_PATH": str(tmp_path)}
    result = runner.invoke(cli.main, ["fal", "-p", "a cat"], env=env)
    assert result.exit_code == 1
    assert "FAL_KEY environment variable is not set" in result.output


def test_missing_required_input_shows_example(runner, tmp_path: Path):
    result = runner.invoke(cli.main, ["fal", "-m", "kontext", "-p", "make it a tiger"],
                           env=smoke_env("fal", tmp_path))
    assert result.exit_code == 1
    assert "image-to-image models require: image_url" in result.output
    assert "Example:" in result.output
    assert "--image-url" in result.output
    assert not list(tmp_path.iterdir())


def test_help_short_flag(runner):
    result = runner.invoke(cli.main, ["fal", "-h"])
    assert result.exit_code == 0
    assert "--prompt" in result.output
    assert "--dry-run" in result.output


def test_width_requires_height(runner, tmp_path: Path):
    result = runner.invoke(cli.main, ["fal", "-p", "x", "--width", "512"], env=smoke_env("fal", tmp_path))
    assert result.exit_code == 2
    assert "--width and --height must be provided together" in result.output


def test_dry_run_writes_nothing(runner, tmp_path: Path):
    env = {"FAL_KEY": None, "FAL_SMOKE_TEST": None, "FAL_PATH": str(tmp_path / "out")}
    result = runner.invoke(cli.main, ["fal", "-p", "a cat", "--lora", "disney", "--dry-run"], env=env)
    assert result.exit_code == 0, result.output
    assert "*** NOT SENT (dry-run)" in result.output
    assert "fal-ai/flux-lora" in result.output
    assert "DisneyRenstyle. a cat" in result.output
    assert not (tmp_path / "out").exists() or not list((tmp_path / "out").iterdir())


def test_venice_passthrough_options(runner, tmp_path: Path):
    env = {"VENICE_API_TOKEN": None, "VENICE_SMOKE_TEST": None, "VENICE_PATH": str(tmp_path)}
    result = runner.invoke(cli.main, ["venice", "-p", "a fox", "--lora-strength", "60", "--no-safe-mode",
                                      "--embed-exif-metadata", "--dry-run"], env=env)
    assert result.exit_code == 0, result.output
    assert "'lora_strength': 60" in result.output
    assert "'safe_mode': False" in result.output
    assert "'embed_exif_metadata': True" in result.output


def test_venice_passthrough_omitted_by_default(runner, tmp_path: Path):
    env = {"VENICE_API_TOKEN": None, "VENICE_SMOKE_TEST": None, "VENICE_PATH": str(tmp_path)}
    result = runner.invoke(cli.main, ["venice", "-p", "a fox", "--dry-run"], env=env)
    assert result.exit_code == 0, result.output
    assert "safe_mode" not in result.output
    assert "lora_strength" not in result.output


def test_count_repeats_prompt(runner, tmp_path: Path):
    result = runner.invoke(cli.main, ["fal", "-p", "a cat", "--count", "2", "--name", "cat"],
                           env=smoke_env("fal", tmp_path))
    assert result.exit_code == 0, result.output
    assert "=== [2/2]" in result.output
    assert len(list(tmp_path.glob("cat-1-*.png"))) == 2


def test_all_prompts_from_directory(runner, tmp_path: Path):
    out = tmp_path / "out"
    with runner.isolated_filesystem(temp_dir=tmp_path):
        Path("castle.txt").write_text("a castle")
        Path("forest.txt").write_text("a forest")
        result = runner.invoke(cli.main, ["wavespeed", "--all-prompts"], env=smoke_env("wavespeed", out))
    assert result.exit_code == 0, result.output
    assert "=== [1/2] castle" in result.output
    assert (out / "castle-1-mock-wavespeed-output.png").exists()
    assert (out / "forest-1-mock-wavespeed-output.png").exists()


def test_upstream_failure_sets_exit_code(runner, tmp_path: Path, monkeypatch):
    def reject(self, descriptor, body, settings):
        raise UpstreamError("API Error: Invalid API key", status_code=401)

    monkeypatch.setattr(WavespeedProvider, "submit", reject)
    result = runner.invoke(cli.main, ["wavespeed", "-p", "a cat"], env=live_env("wavespeed", tmp_path))
    assert result.exit_code == 1
    assert "1 of 1 generation(s) failed" in result.output


def test_replicate_get_smoke(runner, tmp_path: Path):
    env = smoke_env("replicate", tmp_path)
    first = runner.invoke(cli.main, ["replicate-get"], env=env)
    assert first.exit_code == 0, first.output
    assert "Downloaded: 1" in first.output

    second = runner.invoke(cli.main, ["replicate-get"], env=env)
    assert second.exit_code == 0
    assert "Already downloaded: 1" in second.output
    assert "Downloaded: 0" in second.output


# ------------------------------ models ------------------------------

def test_models_lists_catalog(runner):
    result = runner.invoke(cli.main, ["models", "fal"])
    assert result.exit_code == 0
    assert f"{len(FalProvider().registry)} model(s)" in result.output
    assert "(default)" in result.output


def test_models_by_category(runner):
    result = runner.invoke(cli.main, ["models", "fal", "--category", "image-to-video"])
    assert result.exit_code == 0
    assert "fal-ai/wan-i2v" in result.output
    assert "fal-ai/flux/dev " not in result.output


def test_models_info(runner):
    result = runner.invoke(cli.main, ["models", "venice", "--info", "sd35"])
    assert result.exit_code == 0
    assert "venice-sd35" in result.output
    assert "Divisor:" in result.output
    assert "Prompt limit:1500" in result.output.replace(" ", "")


def test_models_info_unknown(runner):
    result = runner.invoke(cli.main, ["models", "fal", "--info", "nope"])
    assert result.exit_code == 1
    assert "Unknown model 'nope'" in result.output


def test_models_loras(runner):
    result = runner.invoke(cli.main, ["models", "fal", "--loras"])
    assert result.exit_code == 0
    assert "disney" in result.output
    assert "DisneyRenstyle" in result.output

    result = runner.invoke(cli.main, ["models", "venice", "--loras"])
    assert "venice has no LoRA catalog" in result.output
