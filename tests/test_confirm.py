"""!
@brief Tests for the cleanup confirmation prompt.
"""
from __future__ import annotations

import pathlib
import sys

import pytest

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from twingate_janitor import confirm  # noqa: E402


def _never(prompt: str) -> str:
    raise AssertionError("prompt should not be shown")


@pytest.mark.parametrize("dry_run, assume_yes", [(True, False), (False, True)])
def test_prompt_skipped_for_dry_run_and_yes(dry_run, assume_yes) -> None:
    assert confirm.request_cleanup_confirmation(
        dry_run=dry_run, assume_yes=assume_yes, input_func=_never, interactive=True
    )


def test_non_interactive_session_proceeds() -> None:
    assert confirm.request_cleanup_confirmation(dry_run=False, assume_yes=False, input_func=_never, interactive=False)


@pytest.mark.parametrize("answer, expected", [("", True), ("Y", True), (" yes ", True), ("n", False), ("no", False)])
def test_interactive_answers(answer, expected) -> None:
    prompts: list[str] = []

    def _answer(prompt: str) -> str:
        prompts.append(prompt)
        return answer

    result = confirm.request_cleanup_confirmation(
        dry_run=False, assume_yes=False, input_func=_answer, interactive=True
    )

    assert result is expected
    assert prompts and prompts[0].startswith(confirm.CONFIRM_PROMPT)


def test_eof_declines() -> None:
    def _eof(prompt: str) -> str:
        raise EOFError

    assert not confirm.request_cleanup_confirmation(dry_run=False, assume_yes=False, input_func=_eof, interactive=True)
