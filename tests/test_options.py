from pathlib import Path

import pytest

from mediagen import options
from mediagen.loras import CIVITAI, LORAS
from mediagen.options import GenerationOptions, LoraSelection

SAFETENSORS_URL = "https://lora.example/"


@pytest.fixture
def lora_prefix(monkeypatch):
    monkeypatch.setenv("SAFETENSORS_URL", SAFETENSORS_URL)


@pytest.mark.parametrize(
    "inp, expected",
    [
        ("", []),
        ("foo", [{"path": f"{SAFETENSORS_URL}foo.safetensors", "scale": 1.0}]),
        (
            "foo:0.8,bar:1.2,https://ex/lor.safetensors:0.5",
            [
                {"path": f"{SAFETENSORS_URL}foo.safetensors", "scale": 0.8},
                {"path": f"{SAFETENSORS_URL}bar.safetensors", "scale": 1.2},
                {"path": "https://ex/lor.safetensors", "scale": 0.5},
            ],
        ),
        (
            '[{"path": "https://ex/x.safetensors", "scale": 2}]',
            [{"path": "https://ex/x.safetensors", "scale": 2.0}],
        ),
        (
            '["name", {"name": "other", "scale": 0.7}]',
            [
                {"path": f"{SAFETENSORS_URL}name.safetensors", "scale": 1.0},
                {"path": f"{SAFETENSORS_URL}other.safetensors", "scale": 0.7},
            ],
        ),
        (
            "bad:xx",
            [{"path": f"{SAFETENSORS_URL}bad.safetensors", "scale": 1.0}],
        ),
    ],
)
def test_parse_loras(lora_prefix, inp, expected):
    assert [l.as_request() for l in options.parse_loras(inp)] == expected


def test_parse_loras_catalog_keeps_keyword_and_default_scale():
    out = options.parse_loras("disney,anime-flat", LORAS)
    assert out[0] == LoraSelection(CIVITAI.format(id=825954), 1.0, "DisneyRenstyle")
    assert out[1].scale == 2.0
    assert out[1].keyword == "Flat colour anime style image showing"


def test_parse_loras_catalog_scale_override():
    (out,) = options.parse_loras("niji:0.4", LORAS)
    assert out.scale == 0.4
    assert out.keyword == "aidmanijiv6, "


def test_parse_loras_list_input_keeps_order(lora_prefix):
    out = options.parse_loras(["b:0.5", "a"])
    assert [l.path for l in out] == [f"{SAFETENSORS_URL}b.safetensors", f"{SAFETENSORS_URL}a.safetensors"]


def test_parse_loras_unknown_name_without_prefix_is_dropped(monkeypatch, caplog):
    monkeypatch.delenv("SAFETENSORS_URL", raising=False)
    assert options.parse_loras("nope", LORAS) == []
    assert "Unknown LoRA 'nope'" in caplog.text


def test_parse_image_urls(monkeypatch, tmp_path: Path):
    monkeypatch.setenv("SOURCE_IMAGE_URL", "https://img.example/")
    local = tmp_path / "local.png"
    local.write_bytes(b"x")
    out = options.parse_image_urls(f"cat, https://x/y.png,, dog.png, {local}")
    assert out == [
        "https://img.example/cat.jpg",
        "https://x/y.png",
        "https://img.example/dog.png",
        str(local),
    ]


def test_parse_image_urls_without_prefix_keeps_tokens(monkeypatch):
    monkeypatch.delenv("SOURCE_IMAGE_URL", raising=False)
    assert options.parse_image_urls("cat") == ["cat"]
    assert options.parse_image_urls("") == []


def test_coerce_image_size_named_and_explicit():
    assert options.coerce_image_size("portrait_4_3", None, None) == "portrait_4_3"
    assert options.coerce_image_size(None, None, None) is None
    with pytest.raises(Exception):
        options.coerce_image_size(None, 100, None)
    assert options.coerce_image_size(None, 640, 480) == {"width": 640, "height": 480}
    with pytest.raises(Exception):
        options.coerce_image_size("square", 640, 480)


@pytest.mark.parametrize(
    "value, expected",
    [
        ("1024*768", (1024, 768)),
        ("640x480", (640, 480)),
        ({"width": 10, "height": 20}, (10, 20)),
        ("square", None),
        ("a*b", None),
        (None, None),
    ],
)
def test_parse_dimensions(value, expected):
    assert options.parse_dimensions(value) == expected


def test_create_records_explicit_options():
    o = GenerationOptions.create("hi", guidance_scale=3.0, strength=None, model="dev")
    assert o.has("guidance_scale")
    assert o.has("model")
    assert not o.has("strength")
    assert o.strength is None


def test_create_randomizes_seed_zero(monkeypatch):
    monkeypatch.setattr(options, "randint", lambda a, b: 123)
    assert GenerationOptions.create("hi", seed=0).seed == 123
    assert GenerationOptions.create("hi", seed=7).seed == 7
    assert GenerationOptions.create("hi").seed is None


@pytest.mark.parametrize("n, expected", [(0, 1), (1, 1), (3, 3), (9, 4), ("x", 1)])
def test_num_images_clamped(n, expected):
    assert GenerationOptions("hi", num_images=n).num_images == expected


def test_empty_prompt_rejected():
    with pytest.raises(ValueError):
        GenerationOptions("  ")


def test_image_url_is_first_input():
    o = GenerationOptions("hi", image_urls=["a", "b"])
    assert o.image_url == "a"
    assert GenerationOptions("hi").image_url is None
