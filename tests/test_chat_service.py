"""
Tests for the end-to-end chat turn.
"""

import pytest

from companion_memory.models.core import IdentityKey, TurnStatus
from companion_memory.services.chat_service import CompanionChatService
from companion_memory.services.errors import ChatServiceError
from companion_memory.services.orchestrator import MemoryOrchestrator
from companion_memory.services.rate_limiter import FixedWindowRateLimiter

MODEL = 'llama2-13b'


@pytest.fixture
def chat_service(orchestrator, completion) -> CompanionChatService:
    return CompanionChatService(orchestrator, completion, model_name=MODEL)


def lines(entries):
    return [entry.as_line() for entry in entries]


class TestChat:

    def test_full_turn_records_both_sides(self, chat_service, completion, history, vector_index):
        result = chat_service.chat('u1', 'c1', 'hello', user_name='Ada')

        assert result.status == TurnStatus.OK
        assert result.reply == "That's a great question!"
        assert result.committed is True

        namespace = IdentityKey('c1', MODEL, 'u1').namespace
        assert lines(history.read_recent(namespace)) == ['Hi: A', 'Hi: B', 'user: hello', "That's a great question!"]
        assert [doc['text'] for doc in vector_index.documents] == ["That's a great question!"]

        prompt = completion.prompts[0]
        assert 'You are Elon and are currently talking to Ada.' in prompt
        assert prompt.endswith('user: hello\nElon:')
        assert completion.stop_sequences == ['\nuser:']

    def test_degenerate_reply_returned_but_not_committed(self, chat_service, completion, history):
        completion.reply = ' ok '

        result = chat_service.chat('u1', 'c1', 'hello')

        assert (result.status, result.reply, result.committed) == (TurnStatus.OK, 'ok', False)
        assert lines(history.read_recent(IdentityKey('c1', MODEL, 'u1').namespace))[-1] == 'user: hello'

    def test_unknown_companion(self, chat_service, completion):
        result = chat_service.chat('u1', 'ghost', 'hello')

        assert result.status == TurnStatus.NOT_FOUND
        assert result.reply is None
        assert completion.prompts == []

    def test_throttled_turn_skips_completion(self, history, vector_memory, catalog, completion, clock):
        limiter = FixedWindowRateLimiter(max_requests=1, window_seconds=10, clock=clock)
        orchestrator = MemoryOrchestrator(limiter, history, vector_memory, catalog, seed_delimiter='\n')
        service = CompanionChatService(orchestrator, completion, model_name=MODEL)

        service.chat('u1', 'c1', 'first')
        result = service.chat('u1', 'c1', 'second')

        assert result.status == TurnStatus.THROTTLED
        assert len(completion.prompts) == 1

    def test_completion_failure_keeps_user_turn(self, chat_service, completion, history):
        completion.fail = True

        with pytest.raises(ChatServiceError):
            chat_service.chat('u1', 'c1', 'hello')

        assert lines(history.read_recent(IdentityKey('c1', MODEL, 'u1').namespace))[-1] == 'user: hello'

    def test_users_do_not_share_transcripts(self, chat_service, history):
        chat_service.chat('u1', 'c1', 'secret plans')
        chat_service.chat('u2', 'c1', 'hello')

        other = lines(history.read_recent(IdentityKey('c1', MODEL, 'u2').namespace))
        assert 'user: secret plans' not in other
