"""
Tests for IdentityKey namespacing and HistoryEntry rendering.
"""

from dataclasses import FrozenInstanceError

import pytest

from companion_memory.models.core import ConversationContext, HistoryEntry, IdentityKey, Role


class TestIdentityKey:
    """Namespace derivation for conversation identities."""

    def test_equal_tuples_share_namespace(self):
        a = IdentityKey(companion_id='c1', model_name='llama2-13b', user_id='u1')
        b = IdentityKey(companion_id='c1', model_name='llama2-13b', user_id='u1')

        assert a == b
        assert a.namespace == b.namespace
        assert hash(a) == hash(b)

    def test_each_component_changes_namespace(self):
        base = IdentityKey(companion_id='c1', model_name='m', user_id='u1')
        others = [
            IdentityKey(companion_id='c2', model_name='m', user_id='u1'),
            IdentityKey(companion_id='c1', model_name='m2', user_id='u1'),
            IdentityKey(companion_id='c1', model_name='m', user_id='u2'),
        ]

        assert all(other.namespace != base.namespace for other in others)

    def test_separator_in_component_does_not_collide(self):
        a = IdentityKey(companion_id='a:b', model_name='m', user_id='u')
        b = IdentityKey(companion_id='a', model_name='b:m', user_id='u')

        assert a.namespace != b.namespace

    def test_rate_limit_key_does_not_collide_on_dash(self):
        a = IdentityKey(companion_id='b-c', model_name='m', user_id='a')
        b = IdentityKey(companion_id='c', model_name='m', user_id='a-b')

        assert a.rate_limit_key != b.rate_limit_key

    def test_rate_limit_key_does_not_collide_on_separator(self):
        a = IdentityKey(companion_id='b/c', model_name='m', user_id='a')
        b = IdentityKey(companion_id='c', model_name='m', user_id='a/b')

        assert a.rate_limit_key != b.rate_limit_key

    def test_rate_limit_key_is_user_then_companion(self):
        assert IdentityKey(companion_id='c1', model_name='m', user_id='u1').rate_limit_key == 'u1/c1'

    def test_identity_is_immutable(self):
        key = IdentityKey(companion_id='c1', model_name='m', user_id='u1')

        with pytest.raises(FrozenInstanceError):
            key.user_id = 'u2'

    @pytest.mark.parametrize('field', ['companion_id', 'model_name', 'user_id'])
    def test_blank_component_rejected(self, field):
        values = {'companion_id': 'c1', 'model_name': 'm', 'user_id': 'u1', field: '  '}

        with pytest.raises(ValueError):
            IdentityKey(**values)


class TestHistoryEntry:
    """Transcript line rendering."""

    def test_user_lines_are_prefixed(self):
        assert HistoryEntry(Role.USER, 'hello', 1).as_line() == 'user: hello'

    def test_companion_lines_are_verbatim(self):
        assert HistoryEntry(Role.COMPANION, 'Elon: Busy as always.', 1).as_line() == 'Elon: Busy as always.'

    def test_context_transcript_joins_lines(self):
        context = ConversationContext(recent_history=[
            HistoryEntry(Role.COMPANION, 'Hi: A', 1),
            HistoryEntry(Role.USER, 'hello', 2),
        ])

        assert context.transcript() == 'Hi: A\nuser: hello'
