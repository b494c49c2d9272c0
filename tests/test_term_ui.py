import contextlib

from prompt_toolkit import PromptSession
from prompt_toolkit.input import create_pipe_input
from prompt_toolkit.output import DummyOutput

from true_north.categories import CATEGORIES
from true_north.term_ui import confirm, prompt_keyword, select_category


@contextlib.contextmanager
def pipe_session():
    with create_pipe_input() as pipe:
        sess = PromptSession(input=pipe, output=DummyOutput())
        yield pipe, sess


def test_select_category_accepts_default_with_enter():
    with pipe_session() as (pipe, sess):
        pipe.send_text("\r")
        assert select_category(CATEGORIES, default="Groceries", session=sess) == "Groceries"


def test_select_category_typed_full_name():
    with pipe_session() as (pipe, sess):
        # Ctrl-A (home), Ctrl-K (kill to end), type the target, Enter
        pipe.send_text("\x01\x0bDining Out\r")
        assert select_category(CATEGORIES, default="Groceries", session=sess) == "Dining Out"


def test_select_category_enter_completes_prefix():
    with pipe_session() as (pipe, sess):
        pipe.send_text("\x01\x0bgro\r")
        assert select_category(CATEGORIES, default="Uncategorized", session=sess) == "Groceries"


def test_select_category_tab_completes_prefix():
    with pipe_session() as (pipe, sess):
        pipe.send_text("\x01\x0bEnt\t\r")
        assert select_category(CATEGORIES, default="Uncategorized", session=sess) == (
            "Entertainment"
        )


def test_select_category_returns_canonical_spelling():
    with pipe_session() as (pipe, sess):
        pipe.send_text("\x01\x0bfees & charges\r")
        assert select_category(CATEGORIES, default="Groceries", session=sess) == "Fees & Charges"


def test_select_category_rejects_values_outside_the_set():
    with pipe_session() as (pipe, sess):
        # "Crypto" matches nothing and is rejected; the retry is accepted.
        pipe.send_text("\x01\x0bCrypto\r")
        pipe.send_text("\x01\x0bTravel\r")
        assert select_category(CATEGORIES, default="Groceries", session=sess) == "Travel"


def test_prompt_keyword_accepts_and_uppercases():
    with pipe_session() as (pipe, sess):
        pipe.send_text("\r")
        assert prompt_keyword(initial="Woolworths", session=sess) == "WOOLWORTHS"

    with pipe_session() as (pipe, sess):
        pipe.send_text("\x01\x0b  kfc tweed \r")
        assert prompt_keyword(initial="KFC", session=sess) == "KFC TWEED"


def test_prompt_keyword_requires_text():
    with pipe_session() as (pipe, sess):
        pipe.send_text("\x01\x0b\r")
        pipe.send_text("ALDI\r")
        assert prompt_keyword(initial="X", session=sess) == "ALDI"


def test_confirm():
    with pipe_session() as (pipe, sess):
        pipe.send_text("y\r")
        assert confirm("Always apply?", session=sess) is True

    with pipe_session() as (pipe, sess):
        pipe.send_text("\r")
        assert confirm("Always apply?", default=True, session=sess) is True

    with pipe_session() as (pipe, sess):
        pipe.send_text("nope\r")
        assert confirm("Always apply?", default=True, session=sess) is False
