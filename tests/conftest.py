"""Shared fixtures: a fake script endpoint and stage-row builders."""

import threading
import time

import pytest

from remote import ScriptClient, StageCache

REGULAR_HEADERS = [
    'S.No', 'Date', 'PartyName', 'Site', 'Stage', 'DraftCategory', 'DraftName',
    'Planned', 'Actual', 'Delay', 'Status',
]


def regular_row(sno, party, category, name, planned=None, actual=None, delay=None, status=None):
    values = [sno, '01/01/2024', party, 'Main', 'Design', category, name, planned, actual, delay, status]
    return dict(zip(REGULAR_HEADERS, values))


def horizontal_row(party, blocks, sno=1):
    """One party row: columns A-E, then one 5-column block per category."""
    row = {'col_0': sno, 'col_1': '01/01/2024', 'col_2': party, 'col_3': 'Main', 'col_4': ''}
    for bi, block in enumerate(blocks):
        start = 5 + bi * 5
        for offset, val in enumerate(block):
            row[f'col_{start + offset}'] = val
    return row


def horizontal_header(categories):
    """Header row (sheet row 5); ``categories`` maps column index -> label."""
    row = {'col_0': 'S.No', 'col_1': 'Date', 'col_2': 'Party Name', 'col_3': 'Site', 'col_4': ''}
    for ci, label in categories.items():
        row[f'col_{ci}'] = label
    return row


def horizontal_sheet(categories, party_rows):
    """Title/banner rows 0-3, header row 4, party rows from 5 on."""
    banner = [{'col_0': f'Banner {i}'} for i in range(4)]
    return banner + [horizontal_header(categories)] + list(party_rows)


class FakeResponse:
    def __init__(self, body, status_code=200):
        self.body = body
        self.status_code = status_code

    def json(self):
        if isinstance(self.body, Exception):
            raise self.body
        return self.body


class FakeSession:
    """
    Stand-in for requests.Session answering by ``action``.

    ``handlers`` maps action -> data, callable(form) -> data, FakeResponse,
    or an exception to raise. ``stages`` maps stage name -> rows for
    getStageData (a missing stage replies ``success: false``).
    """

    def __init__(self, handlers=None, stages=None, delay=0):
        self.handlers = dict(handlers or {})
        self.stages = dict(stages or {})
        self.delay = delay
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def _reply(self, form):
        action = form['action']
        if action == 'getStageData' and action not in self.handlers:
            rows = self.stages.get(form['stageName'])
            if isinstance(rows, Exception):
                raise rows
            if rows is None:
                return FakeResponse({'success': False, 'error': f"Sheet '{form['stageName']}' not found"})
            return FakeResponse({'success': True, 'data': rows})
        handler = self.handlers.get(action)
        if handler is None:
            return FakeResponse({'success': False, 'error': f'Unknown action: {action}'})
        if isinstance(handler, Exception):
            raise handler
        if isinstance(handler, FakeResponse):
            return handler
        data = handler(form) if callable(handler) else handler
        return FakeResponse({'success': True, 'data': data})

    def post(self, url, data=None, timeout=None):
        with self._lock:
            self.calls.append(dict(data))
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                time.sleep(self.delay)
            return self._reply(data)
        finally:
            with self._lock:
                self.in_flight -= 1

    def actions(self):
        return [c['action'] for c in self.calls]

    def stage_calls(self):
        return [c['stageName'] for c in self.calls if c['action'] == 'getStageData']


def make_client(session):
    return ScriptClient('https://script.example.test/exec', session=session)


@pytest.fixture()
def design_rows():
    """Regular stage: Acme has 4 tasks, 2 of them completed."""
    return [
        regular_row(1, 'Acme', 'Drawings', 'Floor plan', '01/02/2024', '03/02/2024', '2', 'Completed'),
        regular_row(2, 'Acme', 'Drawings', 'Elevations', '05/02/2024', None, None, 'In Progress'),
        regular_row(3, 'Other Co', 'Drawings', 'Floor plan', '01/02/2024', None, None, 'Completed'),
        regular_row(4, ' acme ', 'Approvals', 'Permit', '10/02/2024', '12/02/2024', '0', 'completed'),
        regular_row(5, 'ACME', 'Approvals', None, None, None, None, None),
    ]


@pytest.fixture()
def site_rows():
    """Horizontal stage: Acme has 3 populated, completed blocks."""
    return horizontal_sheet(
        {5: 'Foundation', 10: 'Structure', 15: 'Finishing'},
        [
            horizontal_row('Acme', [
                ('Excavation', '01/02/2024', '02/02/2024', '1', 'Completed'),
                ('Columns', '05/02/2024', '06/02/2024', '1', 'Done'),
                ('Plaster', '10/02/2024', '10/02/2024', '0', 'Yes'),
            ]),
            horizontal_row('Other Co', [
                ('Excavation', '01/02/2024', None, None, 'Pending'),
            ], sno=2),
        ],
    )


@pytest.fixture()
def session(design_rows, site_rows):
    return FakeSession(
        handlers={
            'getAllParties': [
                {'id': 1, 'name': 'Acme', 'totalProjects': 2,
                 'stagesPresent': ['Design', 'Site Management']},
                {'id': 2, 'name': 'Other Co', 'totalProjects': 2,
                 'stagesPresent': ['Design', 'Site Management']},
            ],
        },
        stages={'Design': design_rows, 'Site Management': site_rows},
    )


@pytest.fixture()
def client(session):
    return make_client(session)


@pytest.fixture()
def cache(client):
    return StageCache(client, batch_delay=0)
