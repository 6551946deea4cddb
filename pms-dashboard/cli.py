#!/usr/bin/env python3
"""
PMS Dashboard CLI — inspect party/stage/task data from the script endpoint,
export reports, or launch the web dashboard.

Usage:
    python cli.py --url URL                              # Launch dashboard
    python cli.py --url URL --parties --pending          # Party list with pending stages
    python cli.py --url URL --party "Acme"               # Stage progress for a party
    python cli.py --url URL --party "Acme" --stage "Design" --status Pending
    python cli.py --url URL --party "Acme" --json out.json
    python cli.py --url URL --csv report/                # Export CSV tables
    python cli.py --url URL --xlsx report.xlsx           # Export Excel workbook
"""

import argparse
import json
import logging
import os
import sys

from remote import RemoteError, ScriptClient, StageCache


def _print_parties(parties):
    print(f"\n  Parties: {len(parties)}")
    for p in parties:
        line = f"  {p['id']:>4}  {p['name']:40s} stages: {p.get('total_projects', 0)}"
        if 'pending_stages_count' in p:
            line += f"  pending: {p['pending_stages_count']}"
        print(line)
        if p.get('pending_stages'):
            print(f"        pending: {', '.join(p['pending_stages'])}")


def _print_stages(party, summaries):
    print(f"\n  Stages for {party['name']}: {len(summaries)}")
    for s in summaries:
        mark = 'done' if s['is_complete'] else 'pending'
        print(f"  {s['id']:>4}  {s['name']:40s} {s['completed']:>3}/{s['total_tasks']:<3} "
              f"{s['progress']:5.1f}%  {mark}")
        if s.get('error'):
            print(f"        Error: {s['error']}")


def _print_tasks(party_name, stage_name, tasks, total):
    print(f"\n  Tasks for {party_name} in {stage_name}: showing {len(tasks)} of {total}")
    for t in tasks:
        category = t['display_category'] or ''
        print(f"  {category:30s} {t['name']:40s} {t['status']:15s} "
              f"{t['planned_date'] or '-':12s} {t['actual_date'] or '-':12s} {t['delay']}")


def main():
    ap = argparse.ArgumentParser(
        description='PMS Dashboard — party, stage and task progress from a spreadsheet script endpoint'
    )
    ap.add_argument(
        '--url', '-u',
        default=os.environ.get('PMS_SCRIPT_URL'),
        help='Script endpoint URL (default: $PMS_SCRIPT_URL)'
    )
    ap.add_argument('--parties', action='store_true', help='Print the party list')
    ap.add_argument(
        '--pending',
        action='store_true',
        help='With --parties: work out pending stages for every party'
    )
    ap.add_argument('--party', default=None, help='Party name')
    ap.add_argument('--stage', default=None, help='Stage name (with --party: list tasks)')
    ap.add_argument('--category', default='', help='Task filter: category contains')
    ap.add_argument('--task', default='', help='Task filter: task name contains')
    ap.add_argument('--status', default='', help='Task filter: exact status')
    ap.add_argument(
        '--json', '-j',
        default=None,
        metavar='OUTPUT.json',
        help='Write the printed data as JSON'
    )
    ap.add_argument(
        '--csv',
        default=None,
        metavar='OUTPUT_DIR',
        help='Export report tables (Parties/Stages/Tasks) as CSV'
    )
    ap.add_argument(
        '--xlsx',
        default=None,
        metavar='OUTPUT.xlsx',
        help='Export report tables as an Excel workbook'
    )
    ap.add_argument(
        '--port', '-p',
        type=int,
        default=int(os.environ.get('PORT', 8080)),
        help='Server port (default: 8080)'
    )
    ap.add_argument(
        '--host',
        default=os.environ.get('HOST', '127.0.0.1'),
        help='Server host (default: 127.0.0.1)'
    )
    ap.add_argument('--username', default=os.environ.get('PMS_USERNAME', 'admin'))
    ap.add_argument('--password', default=os.environ.get('PMS_PASSWORD', 'admin123'))
    ap.add_argument('--verbose', '-v', action='store_true', help='Debug logging')

    args = ap.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(levelname)s %(name)s: %(message)s',
    )

    if not args.url:
        ap.print_help()
        print("\nError: no script URL (use --url or set PMS_SCRIPT_URL)", file=sys.stderr)
        sys.exit(1)

    client = ScriptClient(args.url)
    cache = StageCache(client)

    try:
        if args.csv or args.xlsx:
            from export import build_report, export_csv, export_xlsx
            report = build_report(client, cache, args.party)
            if args.csv:
                files = export_csv(report, args.csv)
                print(f"\n  CSV tables exported to: {args.csv}/")
                for fp in files:
                    print(f"    - {os.path.basename(fp)}")
            if args.xlsx:
                export_xlsx(report, args.xlsx)
                print(f"\n  Workbook exported to: {args.xlsx}")
            return

        output = None
        if args.party:
            from pipeline import analyze_stages, fetch_parties, filter_tasks, find_party, load_tasks
            party = find_party(fetch_parties(client), args.party)
            if party is None:
                print(f"Error: Party not found: {args.party}", file=sys.stderr)
                sys.exit(1)
            if args.stage:
                tasks = load_tasks(party['name'], args.stage, cache)
                shown = filter_tasks(tasks, args.category, args.task, args.status)
                _print_tasks(party['name'], args.stage, shown, len(tasks))
                output = {'party': party['name'], 'stage': args.stage, 'tasks': shown}
            else:
                summaries = analyze_stages(party, cache)
                _print_stages(party, summaries)
                output = {'party': party, 'stages': summaries}
        elif args.parties:
            from pipeline import annotate_pending, fetch_parties
            parties = fetch_parties(client)
            if args.pending:
                annotate_pending(parties, cache)
            _print_parties(parties)
            output = {'parties': parties}
    except RemoteError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    if output is not None:
        if args.json:
            with open(args.json, 'w', encoding='utf-8') as f:
                json.dump(output, f, indent=2, ensure_ascii=False, default=str)
            print(f"\n  JSON exported to: {args.json}")
        return

    # Launch server
    from server import run_server
    print(f"\n  Starting dashboard at http://{args.host}:{args.port}")
    print("  Press Ctrl+C to stop\n")
    run_server(client, host=args.host, port=args.port,
               username=args.username, password=args.password,
               secret_key=os.environ.get('SECRET_KEY'))


if __name__ == '__main__':
    main()
