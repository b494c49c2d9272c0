"""Terminal prompts for interactive review (prompt_toolkit-based).

Kept apart from the review command so the prompts can be driven in tests
with a pipe input and a dummy output.
"""

from __future__ import annotations

from collections.abc import Sequence

from prompt_toolkit import PromptSession
from prompt_toolkit.auto_suggest import AutoSuggest, Suggestion
from prompt_toolkit.completion import WordCompleter
from prompt_toolkit.key_binding import KeyBindings
from prompt_toolkit.styles import Style
from prompt_toolkit.validation import ValidationError, Validator

from .categories import CATEGORIES


def _session(session: PromptSession | None, kb: KeyBindings) -> PromptSession:
    if session is None:
        return PromptSession(key_bindings=kb)
    return PromptSession(
        input=getattr(session, "input", None),
        output=getattr(session, "output", None),
        key_bindings=kb,
    )


def _best_prefix_match(words: Sequence[str], text: str) -> str | None:
    lower = text.lower()
    if not lower:
        return None
    return next((w for w in words if w.lower().startswith(lower)), None)


class _PrefixSuggest(AutoSuggest):
    def __init__(self, words: Sequence[str]) -> None:
        self._words = list(words)

    def get_suggestion(self, buffer, document):
        text = document.text
        match = _best_prefix_match(self._words, text)
        if match is None or match.lower() == text.lower():
            return None
        return Suggestion(match[len(text) :])


class _ClosedSetValidator(Validator):
    def __init__(self, words: Sequence[str]) -> None:
        self._allowed = {w.lower() for w in words}

    def validate(self, document) -> None:
        if document.text.strip().lower() not in self._allowed:
            raise ValidationError(message="Pick one of the listed categories (Tab completes).")


def select_category(
    categories: Sequence[str] = CATEGORIES,
    *,
    default: str,
    message: str = "Category (Enter to accept): ",
    session: PromptSession | None = None,
) -> str:
    """Prompt for one category out of ``categories`` and return its canonical spelling.

    The buffer starts with ``default``. Typing a prefix shows the first
    matching category greyed out; Tab or Enter completes it. Input outside
    the set is rejected inline, so the function only returns listed values.
    """

    words = list(categories)
    canonical = {w.lower(): w for w in words}
    kb = KeyBindings()

    @kb.add("tab", eager=True)
    def _(event) -> None:  # pragma: no cover - exercised through prompts
        b = event.app.current_buffer
        match = _best_prefix_match(words, b.document.text)
        if match is not None:
            b.text = match
            b.cursor_position = len(match)
        elif b.complete_state is None:
            b.start_completion(select_first=True)
        else:
            b.complete_next()

    @kb.add("enter", eager=True)
    def _(event) -> None:  # pragma: no cover - exercised through prompts
        b = event.app.current_buffer
        cs = b.complete_state
        if cs is not None and cs.current_completion is not None:
            b.apply_completion(cs.current_completion)
        elif b.document.text.strip().lower() not in canonical:
            match = _best_prefix_match(words, b.document.text.strip())
            if match is not None:
                b.text = match
                b.cursor_position = len(match)
        b.validate_and_handle()

    sess = _session(session, kb)
    result = sess.prompt(
        message,
        default=default,
        completer=WordCompleter(words, ignore_case=True, match_middle=True, sentence=True),
        auto_suggest=_PrefixSuggest(words),
        validator=_ClosedSetValidator(words),
        validate_while_typing=False,
        key_bindings=kb,
        style=Style.from_dict({"auto-suggestion": "fg:#888888"}),
    )
    return canonical[result.strip().lower()]


def prompt_keyword(
    *,
    initial: str,
    session: PromptSession | None = None,
    message: str = "Rule keyword (Enter to save, Esc to skip): ",
) -> str | None:
    """Edit a suggested rule keyword. Returns ``None`` when skipped with Esc."""

    kb = KeyBindings()

    @kb.add("escape")
    def _(event) -> None:  # pragma: no cover - exercised indirectly
        event.app.exit(result=None)

    class _NonEmpty(Validator):
        def validate(self, document) -> None:
            if not document.text.strip():
                raise ValidationError(message="Keyword must not be empty")

    value = _session(session, kb).prompt(
        message, default=initial, validator=_NonEmpty(), validate_while_typing=False
    )
    return value.strip().upper() if value is not None else None


def confirm(
    message: str,
    *,
    default: bool = False,
    session: PromptSession | None = None,
) -> bool:
    """Ask a yes/no question; an empty answer returns ``default``."""

    kb = KeyBindings()
    hint = "[Y/n]" if default else "[y/N]"
    answer = _session(session, kb).prompt(f"{message} {hint} ")
    answer = (answer or "").strip().lower()
    if not answer:
        return default
    return answer in {"y", "yes"}


__all__ = ["confirm", "prompt_keyword", "select_category"]
