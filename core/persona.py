import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

log = logging.getLogger(__name__)

DEFAULT_PERSONA_PATH = Path(__file__).with_name("persona_config.yaml")
FALLBACK_PROMPT = (
    "You are my $SCRT trading agent. You must convince me to let you trade USDC for SCRT."
)
SECTION_ORDER = ("role", "goal", "tone")


def _section_lines(value: Any) -> List[str]:
    items = value if isinstance(value, list) else [value]
    return [" ".join(item.split()) for item in items if isinstance(item, str) and item.strip()]


class PersonaConfig:
    """System prompt assembled from YAML sections, re-read when either file changes."""

    def __init__(
        self,
        *,
        default_path: Path = DEFAULT_PERSONA_PATH,
        override_path: Optional[Path] = None,
    ) -> None:
        self.default_path = default_path
        self.override_path = override_path
        self._cached_prompt = ""
        self._default_mtime: Optional[float] = None
        self._override_mtime: Optional[float] = None
        self._load()

    def _read_config(self, path: Optional[Path]) -> Dict[str, List[str]]:
        """Known sections of a persona file; each is a string or a list of strings."""
        if path is None or not path.is_file():
            return {}
        try:
            with path.open(encoding="utf-8") as handle:
                raw = yaml.safe_load(handle)
        except (OSError, yaml.YAMLError) as exc:
            log.warning("failed to read persona config %s: %s", path, exc)
            return {}
        if not isinstance(raw, dict):
            return {}
        sections = {name: _section_lines(raw.get(name)) for name in SECTION_ORDER}
        return {name: lines for name, lines in sections.items() if lines}

    def _load(self) -> None:
        merged = self._read_config(self.default_path)
        merged.update(self._read_config(self.override_path))
        prompt = " ".join(line for name in SECTION_ORDER for line in merged.get(name, ()))
        prompt = prompt or FALLBACK_PROMPT
        if prompt != self._cached_prompt:
            if self._cached_prompt:
                log.info("persona updated: %s", prompt[:200])
            self._cached_prompt = prompt

    @staticmethod
    def _mtime(path: Optional[Path]) -> Optional[float]:
        if path is None:
            return None
        try:
            return path.stat().st_mtime
        except OSError:
            return None

    def get_prompt(self) -> str:
        default_mtime = self._mtime(self.default_path)
        override_mtime = self._mtime(self.override_path)
        if (
            default_mtime != self._default_mtime
            or override_mtime != self._override_mtime
        ):
            self._default_mtime = default_mtime
            self._override_mtime = override_mtime
            self._load()
        return self._cached_prompt
