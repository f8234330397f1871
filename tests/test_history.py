import json
from unittest import mock

import requests

from history import SessionHistory


def test_record_writes_json_file(tmp_path):
    history = SessionHistory(str(tmp_path / 'history'))

    path = history.record(600, 3, True, 30, 120)

    with open(path, encoding='utf-8') as f:
        record = json.load(f)
    assert record['duration'] == 600
    assert record['sounds_played'] == 3
    assert record['completed'] is True
    assert record['config'] == {'minWait': 30, 'maxWait': 120}
    assert record['created'].endswith('+00:00')
    assert record['synced'] is False


def test_records_skip_unreadable_files(tmp_path):
    history = SessionHistory(str(tmp_path))
    history.record(60, 0, False, 10, 20)
    (tmp_path / 'broken.json').write_text('{', encoding='utf-8')
    (tmp_path / 'notes.txt').write_text('ignored', encoding='utf-8')

    assert len(history.records()) == 1


def test_upload_without_url_is_noop(tmp_path):
    history = SessionHistory(str(tmp_path))
    history.record(60, 0, False, 10, 20)

    with mock.patch('history.requests.post') as post:
        assert history.upload_pending() == {'success': 0, 'failed': 0}
    post.assert_not_called()


def test_upload_marks_synced_and_keeps_failures_queued(tmp_path):
    history = SessionHistory(str(tmp_path), base_url='http://pb.local/', token='secret')
    history.record(600, 2, True, 30, 120)
    history.record(300, 0, False, 30, 120)

    ok = mock.Mock()
    ok.raise_for_status.return_value = None
    with mock.patch('history.requests.post',
                    side_effect=[ok, requests.exceptions.ConnectionError('offline')]) as post:
        result = history.upload_pending()

    assert result == {'success': 1, 'failed': 1}
    url = post.call_args_list[0][0][0]
    kwargs = post.call_args_list[0][1]
    assert url == 'http://pb.local/api/collections/sessions/records'
    assert kwargs['headers']['Authorization'] == 'secret'
    assert kwargs['json']['sounds_played'] == 2
    assert 'synced' not in kwargs['json']
    assert 'path' not in kwargs['json']

    pending = history.pending()
    assert [r['duration'] for r in pending] == [300]

    with mock.patch('history.requests.post', return_value=ok):
        assert history.upload_pending() == {'success': 1, 'failed': 0}
    assert history.pending() == []
