"""
Report exports: CSV tables and an Excel workbook.

A report is the party list plus, per party, its stage summaries and the
tasks of every stage:

    {'parties': [...], 'stages': [...], 'tasks': [...]}

Stage and task rows carry the party (and stage) they belong to, so each
table stands on its own.
"""

import csv
import os

from pipeline import analyze_stages, fetch_parties, find_party, load_tasks, pending_stages
from remote import RemoteError

PARTY_COLUMNS = [
    ('PartyID', 'id'), ('Party', 'name'), ('TotalStages', 'total_projects'),
    ('StagesPresent', 'stages_present'), ('PendingStages', 'pending_stages'),
]
STAGE_COLUMNS = [
    ('Party', 'party_name'), ('Stage', 'name'), ('TotalTasks', 'total_tasks'),
    ('Completed', 'completed'), ('Progress', 'progress'), ('IsComplete', 'is_complete'),
    ('Error', 'error'),
]
TASK_COLUMNS = [
    ('Party', 'party_name'), ('Stage', 'stage_name'), ('Category', 'draft_category'),
    ('Task', 'name'), ('Status', 'status'), ('Planned', 'planned_date'),
    ('Actual', 'actual_date'), ('Delay', 'delay'),
]


def build_report(client, cache, party_name=None):
    """
    Collect parties, stage summaries and tasks.

    With ``party_name`` only that party is included. Raises ValueError if the
    party does not exist.
    """
    parties = fetch_parties(client)
    if party_name:
        party = find_party(parties, party_name)
        if party is None:
            raise ValueError(f"Party '{party_name}' not found")
        parties = [party]

    stages = []
    tasks = []
    for party in parties:
        summaries = analyze_stages(party, cache)
        party['pending_stages'] = pending_stages(summaries)
        party['pending_stages_count'] = len(party['pending_stages'])
        for summary in summaries:
            stages.append({k: v for k, v in summary.items() if k != 'party_tasks'})
            if summary.get('error') or summary['total_tasks'] == 0:
                continue
            try:
                stage_tasks = load_tasks(party['name'], summary['name'], cache)
            except RemoteError:
                continue
            for task in stage_tasks:
                row = dict(task)
                row['party_name'] = party['name']
                row['stage_name'] = summary['name']
                tasks.append(row)

    return {'parties': parties, 'stages': stages, 'tasks': tasks}


def _cell(val):
    if isinstance(val, (list, tuple)):
        return ', '.join(str(v) for v in val)
    if val is None:
        return ''
    return val


def _table(records, columns):
    header = [title for title, _ in columns]
    rows = [[_cell(rec.get(key)) for _, key in columns] for rec in records]
    return header, rows


def report_tables(report):
    return {
        'Parties': _table(report['parties'], PARTY_COLUMNS),
        'Stages': _table(report['stages'], STAGE_COLUMNS),
        'Tasks': _table(report['tasks'], TASK_COLUMNS),
    }


def export_csv(report, output_dir):
    """
    Write Parties.csv, Stages.csv and Tasks.csv into output_dir.

    Files are UTF-8 with BOM so Excel opens them with the right encoding.
    Returns the list of written paths.
    """
    os.makedirs(output_dir, exist_ok=True)
    files = []
    for name, (header, rows) in report_tables(report).items():
        path = os.path.join(output_dir, f'{name}.csv')
        with open(path, 'w', newline='', encoding='utf-8-sig') as f:
            w = csv.writer(f)
            w.writerow(header)
            w.writerows(rows)
        files.append(path)
    return files


def export_xlsx(report, output_path):
    """Write the three report tables as worksheets of one workbook."""
    from openpyxl import Workbook
    from openpyxl.styles import Font

    wb = Workbook()
    wb.remove(wb.active)
    for name, (header, rows) in report_tables(report).items():
        ws = wb.create_sheet(title=name)
        ws.append(header)
        for cell in ws[1]:
            cell.font = Font(bold=True)
        for row in rows:
            ws.append(row)
        ws.freeze_panes = 'A2'
    wb.save(output_path)
    return output_path
