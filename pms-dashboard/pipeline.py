"""
Party -> stage -> task pipeline.

  fetch_parties     party list (dedicated action, else derived from all stages)
  analyze_stages    per-stage task counts and progress for one party
  annotate_pending  pending stages for every party, sharing one batched fetch
  load_tasks        task records for one (party, stage) pair
  group_tasks       category grouping and ordering
  filter_tasks      client-side category / name / status filters
"""

import logging
import re

from fields import is_complete, scan_party_name
from layouts import layout_for
from remote import RemoteError

logger = logging.getLogger('pms.pipeline')

STAGE_NAME_KEYS = ['name', 'Stage Name', 'Stage']
LEADING_NUMBER = re.compile(r'\s*[-+]?(\d+\.?\d*|\.\d+)([eE][-+]?\d+)?')


def _stage_name(stage_info):
    for key in STAGE_NAME_KEYS:
        val = stage_info.get(key)
        if isinstance(val, str) and val.strip():
            return val.strip()
    for key, val in stage_info.items():
        if key != 'stageData' and isinstance(val, str) and val.strip():
            return val.strip()
    return 'Unknown Stage'


def _coerce_party(entry, index):
    """Map a party entry from the endpoint onto the dashboard's party shape, or None."""
    if isinstance(entry, str):
        entry = {'name': entry}
    if not isinstance(entry, dict):
        return None
    stages = entry.get('stages_present', entry.get('stagesPresent')) or []
    party = dict(entry)
    party['id'] = entry.get('id') or index + 1
    party['name'] = str(entry.get('name') or entry.get('partyName') or entry.get('Party Name') or '').strip()
    party['stages_present'] = list(stages)
    party['total_projects'] = entry.get('total_projects', entry.get('totalProjects', len(stages)))
    return party


def parties_from_stage_data(all_stage_data):
    """
    Derive the party list from every stage's raw rows.

    Row 0 of each stage is its header. Parties keep first-seen order.
    """
    order = []
    stages_by_party = {}
    for stage_info in all_stage_data or []:
        if not isinstance(stage_info, dict):
            continue
        rows = stage_info.get('stageData')
        if not isinstance(rows, list):
            continue
        stage_name = _stage_name(stage_info)
        for ri, row in enumerate(rows):
            if ri == 0 or not isinstance(row, dict):
                continue
            name = scan_party_name(row)
            if name is None:
                continue
            if name not in stages_by_party:
                order.append(name)
                stages_by_party[name] = []
            if stage_name not in stages_by_party[name]:
                stages_by_party[name].append(stage_name)

    return [
        {
            'id': i + 1,
            'name': name,
            'total_projects': len(stages_by_party[name]),
            'stages_present': list(stages_by_party[name]),
        }
        for i, name in enumerate(order)
    ]


def fetch_parties(client):
    """Full party list; falls back to scanning all stages when getAllParties fails or is empty."""
    try:
        data = client.get_all_parties()
        parties = [_coerce_party(entry, i) for i, entry in enumerate(data if isinstance(data, list) else [])]
        parties = [p for p in parties if p is not None]
        if parties:
            return parties
        logger.warning('getAllParties returned no data, falling back to getAllStageData')
    except RemoteError as e:
        logger.warning('getAllParties failed, falling back to getAllStageData: %s', e)

    parties = parties_from_stage_data(client.get_all_stage_data())
    logger.info('Derived %d parties from stage data', len(parties))
    return parties


def find_party(parties, name):
    """Look a party up by name (case- and trim-insensitive)."""
    key = (name or '').strip().casefold()
    for party in parties:
        if party['name'].strip().casefold() == key:
            return party
    return None


def summarize_stage(stage_name, party_name, rows, stage_id=1):
    total, completed, party_rows = layout_for(stage_name).completion(rows, party_name)
    progress = (completed / total) * 100 if total > 0 else 0
    return {
        'id': stage_id,
        'name': stage_name,
        'total_tasks': total,
        'completed': completed,
        'progress': round(progress, 1),
        'is_complete': is_complete(total, completed),
        'party_tasks': party_rows,
        'party_name': party_name,
    }


def analyze_stages(party, cache, retry_failed=True):
    """
    Stage summaries for one party, in the order of its stages_present list.

    A stage that cannot be fetched is reported with zero tasks and an
    ``error`` message. Each stage is requested at most once per call:
    ``retry_failed=True`` includes stages that failed earlier in this cache
    in the prefetch, ``retry_failed=False`` skips the prefetch entirely.
    """
    stage_names = party.get('stages_present') or []
    if retry_failed:
        cache.prefetch(stage_names)
    summaries = []
    for i, stage_name in enumerate(stage_names):
        try:
            if stage_name not in cache and stage_name in cache.errors:
                raise RemoteError(cache.errors[stage_name])
            rows = cache.get(stage_name)
        except RemoteError as e:
            logger.error('Error fetching data for stage %s: %s', stage_name, e)
            summary = summarize_stage(stage_name, party['name'], [], stage_id=i + 1)
            summary['error'] = str(e)
        else:
            summary = summarize_stage(stage_name, party['name'], rows, stage_id=i + 1)
        summaries.append(summary)
    return summaries


def pending_stages(summaries):
    return [s['name'] for s in summaries if not s['is_complete']]


def annotate_pending(parties, cache):
    """
    Fill pending_stages / pending_stages_count on every party.

    Stage names across all parties are fetched once, through the cache, in
    throttled batches before any party is analyzed.
    """
    all_stages = []
    for party in parties:
        for name in party.get('stages_present') or []:
            if name not in all_stages:
                all_stages.append(name)
    cache.prefetch(all_stages)

    for party in parties:
        pending = pending_stages(analyze_stages(party, cache, retry_failed=False))
        party['pending_stages'] = pending
        party['pending_stages_count'] = len(pending)
    return parties


def load_tasks(party_name, stage_name, cache):
    """Extracted, grouped tasks for one party in one stage."""
    layout = layout_for(stage_name)
    rows = cache.get(stage_name)
    tasks = layout.extract_tasks(rows, party_name)
    logger.debug('%s / %s: %d tasks (%s layout)', party_name, stage_name, len(tasks), layout.name)
    return group_tasks(tasks, layout)


def group_tasks(tasks, layout):
    """
    Group tasks by category in the layout's category order.

    The first task of each group carries the category label; the others
    have ``display_category`` set to None.
    """
    groups = {}
    for task in tasks:
        groups.setdefault(task['draft_category'], []).append(task)

    result = []
    for category in layout.order_categories(groups):
        members = groups[category]
        for i, task in enumerate(members):
            item = dict(task)
            item['is_first_in_category'] = i == 0
            item['category_task_count'] = len(members)
            item['display_category'] = category if i == 0 else None
            result.append(item)
    return result


def filter_tasks(tasks, category='', name='', status=''):
    """Category and name are substring matches (case-insensitive), status is exact."""
    category = (category or '').lower()
    name = (name or '').lower()
    status = status or ''
    return [
        task for task in tasks
        if (not category or category in task['draft_category'].lower())
        and (not name or name in task['name'].lower())
        and (not status or task['status'] == status)
    ]


def filter_options(tasks):
    """Sorted unique values for the filter dropdowns."""
    return {
        'categories': sorted({t['draft_category'] for t in tasks}),
        'names': sorted({t['name'] for t in tasks}),
        'statuses': sorted({t['status'] for t in tasks}),
    }


STATUS_TONES = [
    ('done', ['completed', 'done', 'finished']),
    ('active', ['progress', 'ongoing', 'working']),
    ('waiting', ['pending', 'waiting', 'not set']),
]


def status_tone(status):
    lower = str(status or '').lower()
    for tone, keywords in STATUS_TONES:
        if any(kw in lower for kw in keywords):
            return tone
    return 'neutral'


def format_delay(value):
    """
    '+3' for positive delays, '0' for empty ones.

    Only the leading number counts, so '3 days' reads as 3; anything without
    one ("nan", "-") reads as 0.
    """
    if value is None:
        return '0'
    match = LEADING_NUMBER.match(str(value))
    if not match:
        return '0'
    delay = float(match.group(0))
    if delay == 0:
        return '0'
    if delay.is_integer():
        delay = int(delay)
    return f'+{delay}' if delay > 0 else str(delay)
