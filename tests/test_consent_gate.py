import io
import threading

import pytest

from scriptsign.consent import CONSENT_TOKEN, ConsentGate
from scriptsign.errors import ConsentDeclined
from scriptsign.policy.inspector import inspect_policies
from scriptsign.policy.model import ExecutionPolicy
from scriptsign.policy.store import MemoryPolicyStore
from scriptsign.prompt import ConsolePrompt, StaticPrompt


def _snapshot():
    return inspect_policies(MemoryPolicyStore.uniform(ExecutionPolicy.RESTRICTED))


def test_exact_token_continues():
    out = io.StringIO()
    gate = ConsentGate(StaticPrompt("proceed"), out)
    assert gate.request(_snapshot(), ExecutionPolicy.REMOTE_SIGNED) is True
    text = out.getvalue()
    assert "Current execution policies:" in text
    assert "WARNING" in text
    assert "RemoteSigned" in text


@pytest.mark.parametrize("answer", ["", "Proceed", "PROCEED", "yes", " ", " proceed", "proceed ", "no", None])
def test_anything_else_declines(answer):
    gate = ConsentGate(StaticPrompt(answer), io.StringIO())
    assert gate.request(_snapshot(), ExecutionPolicy.ALL_SIGNED) is False


def test_prompt_mentions_token():
    prompt = StaticPrompt("nope")
    ConsentGate(prompt, io.StringIO()).request(_snapshot(), ExecutionPolicy.ALL_SIGNED)
    assert len(prompt.asked) == 1
    assert CONSENT_TOKEN in prompt.asked[0]


def test_require_raises_on_decline():
    gate = ConsentGate(StaticPrompt("no"), io.StringIO())
    with pytest.raises(ConsentDeclined):
        gate.require(_snapshot(), ExecutionPolicy.ALL_SIGNED)


def test_require_assume_yes_still_warns():
    out = io.StringIO()
    prompt = StaticPrompt(None)
    ConsentGate(prompt, out).require(_snapshot(), ExecutionPolicy.ALL_SIGNED, assume_yes=True)
    assert prompt.asked == []
    assert "WARNING" in out.getvalue()
    assert "AllSigned" in out.getvalue()


def test_console_prompt_strips_only_newline():
    prompt = ConsolePrompt(stdin=io.StringIO("proceed\n"), stdout=io.StringIO())
    assert prompt.ask("? ") == "proceed"
    prompt = ConsolePrompt(stdin=io.StringIO(" proceed \n"), stdout=io.StringIO())
    assert prompt.ask("? ") == " proceed "


def test_console_prompt_end_of_input_is_none():
    prompt = ConsolePrompt(stdin=io.StringIO(""), stdout=io.StringIO())
    assert prompt.ask("? ") is None


class _SilentInput:
    """readline() blocks until released, like a terminal nobody types into."""

    def __init__(self):
        self.release = threading.Event()

    def readline(self):
        self.release.wait()
        return ""


def test_console_prompt_timeout_declines():
    stdin = _SilentInput()
    try:
        prompt = ConsolePrompt(timeout=0.05, stdin=stdin, stdout=io.StringIO())
        assert prompt.ask("? ") is None
        assert ConsentGate(prompt, io.StringIO()).request(_snapshot(), ExecutionPolicy.ALL_SIGNED) is False
    finally:
        stdin.release.set()
