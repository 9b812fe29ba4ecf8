from __future__ import annotations

import json
import os
import shlex
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from .errors import InvalidConfigurationError
from .steps import Step


CONFIG_ENV_KEY = "PHYLOPIPE_CONFIG"

DEFAULT_TOOL_COMMANDS: dict[str, str] = {
    "mafft": "mafft",
    "fftns": "fftns",
    "hmmbuild": "hmmbuild",
    "trimal": "trimal",
    "phyml": "phyml",
    "retree": "retree",
    "rap": "java -Xmx2g -jar RapGreen.jar",
    "sdi": "java -cp forester.jar org.forester.application.sdi",
    "sdi_r": "java -cp forester.jar org.forester.application.sdi_r",
    "phyloxml_converter": "java -cp forester.jar org.forester.application.phyloxml_converter",
    "dorio": "dorio",
    "distmat": "distmat",
    "nw_reroot": "nw_reroot",
    "sendmail": "sendmail",
}

SEQUENCE_TYPES = ("protein", "nucleic")


class RootingEngine(str, Enum):
    RAP = "rap"
    SDI = "sdi"


class MaskingFailurePolicy(str, Enum):
    ABORT = "abort"
    USE_ORIGINAL_ALIGNMENT = "use_original_alignment"


def tool_env_key(tool: str) -> str:
    return f"PHYLOPIPE_{tool.upper()}_CMD"


@dataclass
class Settings:
    """Site-wide settings shared by every run."""

    output_root: Path = field(default_factory=lambda: Path("phylopipe_output"))
    species_tree: Path | None = None
    bootstrap_count: int = 100
    sequence_type: str = "protein"
    filtering_threshold: float = 0.1
    sender_email: str | None = None
    mafft_binaries: str | None = None
    tools: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_TOOL_COMMANDS))

    def __post_init__(self) -> None:
        self.output_root = Path(self.output_root)
        if self.species_tree is not None:
            self.species_tree = Path(self.species_tree)
        if self.sequence_type not in SEQUENCE_TYPES:
            raise InvalidConfigurationError(
                f"sequence_type must be one of {', '.join(SEQUENCE_TYPES)}; got '{self.sequence_type}'."
            )
        if int(self.bootstrap_count) < 0:
            raise InvalidConfigurationError("bootstrap_count must be >= 0.")
        self.bootstrap_count = int(self.bootstrap_count)
        if not 0.0 <= float(self.filtering_threshold) <= 1.0:
            raise InvalidConfigurationError("filtering_threshold must be within [0, 1].")
        self.filtering_threshold = float(self.filtering_threshold)
        unknown = sorted(set(self.tools) - set(DEFAULT_TOOL_COMMANDS))
        if unknown:
            raise InvalidConfigurationError(f"Unknown tool(s) in settings: {', '.join(unknown)}")
        merged = dict(DEFAULT_TOOL_COMMANDS)
        merged.update(self.tools)
        self.tools = merged

    @property
    def is_protein(self) -> bool:
        return self.sequence_type == "protein"

    def command(self, tool: str) -> list[str]:
        """Command line for a tool, honouring PHYLOPIPE_<TOOL>_CMD."""
        if tool not in DEFAULT_TOOL_COMMANDS:
            raise InvalidConfigurationError(f"Unknown tool: {tool}")
        raw = os.environ.get(tool_env_key(tool)) or self.tools[tool]
        argv = shlex.split(raw)
        if not argv:
            raise InvalidConfigurationError(f"Empty command configured for tool '{tool}'.")
        return argv

    def require_species_tree(self) -> Path:
        if self.species_tree is None:
            raise InvalidConfigurationError("species_tree is not configured.")
        return self.species_tree

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["output_root"] = str(self.output_root)
        payload["species_tree"] = str(self.species_tree) if self.species_tree else None
        payload["tools"] = {name: " ".join(self.command(name)) for name in sorted(self.tools)}
        return payload


_SETTINGS_KEYS: dict[str, tuple[type, ...]] = {
    "output_root": (str,),
    "species_tree": (str, type(None)),
    "bootstrap_count": (int,),
    "sequence_type": (str,),
    "filtering_threshold": (int, float),
    "sender_email": (str, type(None)),
    "mafft_binaries": (str, type(None)),
    "tools": (dict,),
}


def validate_settings_payload(payload: Any) -> None:
    if not isinstance(payload, dict):
        raise InvalidConfigurationError("settings payload must be a JSON object.")
    unknown = sorted(set(payload) - set(_SETTINGS_KEYS))
    if unknown:
        raise InvalidConfigurationError(f"Unknown settings key(s): {', '.join(unknown)}")
    for key, value in payload.items():
        expected = _SETTINGS_KEYS[key]
        if isinstance(value, bool) or not isinstance(value, expected):
            names = "/".join(t.__name__ for t in expected)
            raise InvalidConfigurationError(f"settings key '{key}' must be {names}.")
    for name, command in payload.get("tools", {}).items():
        if not isinstance(command, str):
            raise InvalidConfigurationError(f"tools.{name} must be a command string.")


def load_settings(path: str | Path | None = None) -> Settings:
    """Load settings from a JSON file, $PHYLOPIPE_CONFIG, or defaults."""
    if path is None:
        env_path = os.environ.get(CONFIG_ENV_KEY)
        if not env_path:
            return Settings()
        path = env_path
    p = Path(path)
    if not p.exists():
        raise InvalidConfigurationError(f"Settings file not found: {p}")
    try:
        with p.open("r", encoding="utf-8") as handle:
            payload = json.load(handle)
    except json.JSONDecodeError as exc:
        raise InvalidConfigurationError(f"Settings file {p} is not valid JSON: {exc}") from exc
    validate_settings_payload(payload)
    return Settings(**payload)


@dataclass
class PipelineConfig:
    family_id: str
    input_fasta: Path
    settings: Settings = field(default_factory=Settings)
    output_dir: Path | None = None
    resume_step: Step = Step.ALIGNMENT
    end_step: Step = Step.ORTHOLOGY
    auto_resume: bool = False
    rooting_engine: RootingEngine = RootingEngine.RAP
    masking_failure_policy: MaskingFailurePolicy = MaskingFailurePolicy.ABORT
    skip_masking: bool = False
    midpoint_rooting: bool = False
    check_alignment_quality: bool = False
    clear_previous: bool = False
    email: str | None = None

    def __post_init__(self) -> None:
        if not self.family_id or any(sep in self.family_id for sep in ("/", "\\")):
            raise InvalidConfigurationError(f"Invalid family identifier: '{self.family_id}'")
        self.input_fasta = Path(self.input_fasta)
        if self.output_dir is not None:
            self.output_dir = Path(self.output_dir)
        self.resume_step = Step.parse(self.resume_step)
        self.end_step = Step.parse(self.end_step)
        if self.resume_step > self.end_step:
            raise InvalidConfigurationError(
                f"resume step '{self.resume_step.label}' comes after end step '{self.end_step.label}'."
            )
        self.rooting_engine = RootingEngine(self.rooting_engine)
        self.masking_failure_policy = MaskingFailurePolicy(self.masking_failure_policy)

    @property
    def family_dir(self) -> Path:
        base = self.output_dir if self.output_dir is not None else self.settings.output_root
        return base / self.family_id
