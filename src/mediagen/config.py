"""Per-invocation settings resolved from the environment and CLI flags."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from .errors import ConfigurationError


@dataclass(frozen=True)
class ProviderEnv:
    """Names of the environment variables a provider reads."""
    credential: str
    output_dir: str
    smoke: str
    default_output: str = "images"


PROVIDER_ENV = {
    "fal": ProviderEnv("FAL_KEY", "FAL_PATH", "FAL_SMOKE_TEST"),
    "wavespeed": ProviderEnv("WAVESPEED_KEY", "WAVESPEED_PATH", "WAVESPEED_SMOKE_TEST"),
    "venice": ProviderEnv("VENICE_API_TOKEN", "VENICE_PATH", "VENICE_SMOKE_TEST", default_output="images/venice"),
    "replicate": ProviderEnv("REPLICATE_API_TOKEN", "REPLICATE_OUTPUT_DIR", "REPLICATE_SMOKE_TEST",
                             default_output="output"),
}


@dataclass(frozen=True)
class Settings:
    provider: str
    api_key: Optional[str]
    output_dir: Path
    smoke: bool = False
    debug: bool = False
    dry_run: bool = False
    embed_exif: bool = False

    @classmethod
    def from_env(cls, provider: str, *, out: bool = False, debug: bool = False, dry_run: bool = False,
                 embed_exif: bool = False, env: Optional[Mapping[str, str]] = None,
                 cwd: Optional[Path] = None) -> "Settings":
        """Build settings for ``provider``.

        Output directory: ``--out`` forces ``<cwd>/images``, otherwise the
        provider's override variable, otherwise the provider default under cwd.
        The credential is required unless smoke mode or a dry run is active.
        """
        env = os.environ if env is None else env
        cwd = Path.cwd() if cwd is None else Path(cwd)
        names = PROVIDER_ENV[provider]

        smoke = env.get(names.smoke) == "1"
        api_key = env.get(names.credential) or None
        if not api_key and not (smoke or dry_run):
            raise ConfigurationError(
                f"{names.credential} environment variable is not set. "
                f"Set it with: export {names.credential}='your-api-key'"
            )

        if out:
            output_dir = cwd / "images"
        elif env.get(names.output_dir):
            output_dir = Path(env[names.output_dir]).expanduser()
        else:
            output_dir = cwd / names.default_output

        return cls(provider=provider, api_key=api_key, output_dir=output_dir, smoke=smoke, debug=debug,
                   dry_run=dry_run, embed_exif=embed_exif)
