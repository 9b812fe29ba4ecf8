from __future__ import annotations

from enum import IntEnum

from .errors import InvalidConfigurationError


class Step(IntEnum):
    ALIGNMENT = 0
    HMM = 1
    MASKING = 2
    PHYLOGENY = 3
    ROOTING = 4
    ORTHOLOGY = 5

    @property
    def label(self) -> str:
        return self.name.lower()

    @classmethod
    def parse(cls, value: "str | Step") -> "Step":
        if isinstance(value, Step):
            return value
        key = str(value).strip().upper()
        try:
            return cls[key]
        except KeyError:
            raise InvalidConfigurationError(
                f"Invalid step '{value}'. Expected one of: {', '.join(step_names())}"
            ) from None


def step_names() -> list[str]:
    return [step.label for step in Step]


def should_run(step: Step, resume: Step, end: Step) -> bool:
    """A step runs iff resume <= step <= end."""
    return int(resume) <= int(step) <= int(end)
