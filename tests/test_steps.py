import pytest

from phylopipe.errors import InvalidConfigurationError
from phylopipe.steps import Step, should_run, step_names


def test_step_names_are_ordered() -> None:
    assert step_names() == ["alignment", "hmm", "masking", "phylogeny", "rooting", "orthology"]


def test_parse_accepts_names_case_insensitively() -> None:
    assert Step.parse("Masking") is Step.MASKING
    assert Step.parse(Step.ROOTING) is Step.ROOTING


def test_parse_rejects_unknown_step() -> None:
    with pytest.raises(InvalidConfigurationError, match="Invalid step"):
        Step.parse("assembly")


def test_should_run_iff_between_resume_and_end() -> None:
    for resume in Step:
        for end in Step:
            for step in Step:
                assert should_run(step, resume, end) == (resume <= step <= end)


def test_single_step_window() -> None:
    ran = [s for s in Step if should_run(s, Step.PHYLOGENY, Step.PHYLOGENY)]
    assert ran == [Step.PHYLOGENY]
