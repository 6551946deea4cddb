import pytest
import requests

import remote
from conftest import FakeResponse, FakeSession, make_client
from remote import RemoteError, ScriptClient, StageCache


class TestScriptClient:
    def test_posts_action_and_params(self):
        session = FakeSession(stages={'Design': [{'a': 1}]})
        client = make_client(session)
        assert client.get_stage_data('Design') == [{'a': 1}]
        assert session.calls == [{'action': 'getStageData', 'stageName': 'Design'}]

    def test_http_error_status(self):
        session = FakeSession(handlers={'getAllParties': FakeResponse({'error': 'boom'}, status_code=500)})
        with pytest.raises(RemoteError, match='HTTP error: status 500') as exc:
            make_client(session).get_all_parties()
        assert exc.value.status == 500

    def test_application_error_message(self):
        session = FakeSession(handlers={'getAllParties': FakeResponse({'success': False, 'error': 'Sheet missing'})})
        with pytest.raises(RemoteError, match='Sheet missing'):
            make_client(session).get_all_parties()

    def test_application_error_without_message(self):
        session = FakeSession(handlers={'getAllParties': FakeResponse({'success': False})})
        with pytest.raises(RemoteError, match='Unknown error occurred'):
            make_client(session).get_all_parties()

    def test_transport_error_is_wrapped(self):
        session = FakeSession(handlers={'getAllParties': requests.ConnectionError('refused')})
        with pytest.raises(RemoteError, match='refused'):
            make_client(session).get_all_parties()

    def test_invalid_json(self):
        session = FakeSession(handlers={'getAllParties': FakeResponse(ValueError('no json'))})
        with pytest.raises(RemoteError, match='Invalid JSON'):
            make_client(session).get_all_parties()

    def test_requires_url(self):
        with pytest.raises(ValueError):
            ScriptClient('')


class TestStageCache:
    def test_read_through(self):
        session = FakeSession(stages={'Design': [{'a': 1}]})
        cache = StageCache(make_client(session), batch_delay=0)
        assert cache.get('Design') == [{'a': 1}]
        assert cache.get('Design') == [{'a': 1}]
        assert session.stage_calls() == ['Design']
        assert 'Design' in cache

    def test_failures_are_not_cached(self):
        session = FakeSession(stages={})
        cache = StageCache(make_client(session), batch_delay=0)
        for _ in range(2):
            with pytest.raises(RemoteError):
                cache.get('Missing')
        assert session.stage_calls() == ['Missing', 'Missing']
        assert 'Missing' in cache.errors
        assert 'Missing' not in cache

    def test_non_list_payload_is_empty(self):
        session = FakeSession(stages={'Odd': {'not': 'a list'}})
        cache = StageCache(make_client(session), batch_delay=0)
        assert cache.get('Odd') == []

    def test_prefetch_dedupes_and_skips_cached(self):
        stages = {name: [{'stage': name}] for name in 'ABCD'}
        session = FakeSession(stages=stages)
        cache = StageCache(make_client(session), batch_delay=0)
        cache.get('A')
        cache.prefetch(['A', 'B', 'B', 'C', 'D', 'C', ''])
        assert sorted(session.stage_calls()) == ['A', 'B', 'C', 'D']
        assert len(cache) == 4

    def test_prefetch_settles_every_stage(self):
        stages = {'A': [], 'C': [], 'D': [], 'E': []}
        session = FakeSession(stages=stages)
        cache = StageCache(make_client(session), batch_delay=0)
        failures = cache.prefetch(['A', 'B', 'C', 'D', 'E'])
        assert list(failures) == ['B']
        assert "Sheet 'B' not found" in cache.errors['B']
        for name in 'ACDE':
            assert name in cache

    def test_prefetch_batches(self, monkeypatch):
        sleeps = []
        monkeypatch.setattr(remote.time, 'sleep', lambda s: sleeps.append(s))
        stages = {f'S{i}': [] for i in range(7)}
        session = FakeSession(stages=stages)
        cache = StageCache(make_client(session))
        cache.prefetch(list(stages))
        # 7 stages in batches of 3 -> two pauses between three batches
        assert sleeps == [0.1, 0.1]
        assert len(cache) == 7

    def test_prefetch_concurrency_bound(self):
        stages = {f'S{i}': [] for i in range(6)}
        session = FakeSession(stages=stages, delay=0.02)
        cache = StageCache(make_client(session), batch_delay=0)
        cache.prefetch(list(stages))
        assert 1 <= session.max_in_flight <= 3
        assert len(cache) == 6

    def test_prefetch_nothing_to_do(self):
        session = FakeSession()
        cache = StageCache(make_client(session), batch_delay=0)
        assert cache.prefetch([]) == {}
        assert session.calls == []
