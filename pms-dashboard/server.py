"""
Flask server — serves the dashboard, the login gate and the JSON API.
"""

import hmac
import io
import json
import logging
import os
import secrets
import sysconfig
import tempfile
import zipfile
from functools import wraps

from flask import Flask, Response, request, send_file, send_from_directory, session

from export import build_report, export_csv, export_xlsx
from layouts import is_horizontal_stage
from pipeline import (
    analyze_stages,
    annotate_pending,
    fetch_parties,
    filter_options,
    filter_tasks,
    find_party,
    format_delay,
    load_tasks,
    status_tone,
)
from remote import RemoteError, StageCache

logger = logging.getLogger('pms.server')

# Resolve paths
BASE_DIR = os.path.dirname(os.path.abspath(__file__))


def find_web_dir(base_dir=BASE_DIR):
    """The UI assets beside this module (source tree), else the installed data copy."""
    local = os.path.join(base_dir, 'web')
    if os.path.isdir(local):
        return local
    return os.path.join(sysconfig.get_path('data'), 'share', 'pms-dashboard', 'web')


WEB_DIR = find_web_dir()


def _json(payload, status=200):
    return Response(
        json.dumps(payload, ensure_ascii=False, default=str),
        status=status,
        mimetype='application/json'
    )


def _error(message, status):
    return _json({'error': message}, status=status)


def create_app(client, username='admin', password='admin123', secret_key=None):
    app = Flask(__name__, static_folder=WEB_DIR, static_url_path='')
    app.config['SECRET_KEY'] = secret_key or secrets.token_hex(32)
    app.config['SESSION_COOKIE_HTTPONLY'] = True
    app.config['SESSION_COOKIE_SAMESITE'] = 'Lax'

    app.script_client = client
    app.stage_cache = StageCache(client)

    def login_required(view):
        @wraps(view)
        def wrapped(*args, **kwargs):
            if not session.get('logged_in'):
                return _error('Login required', 401)
            try:
                return view(*args, **kwargs)
            except RemoteError as e:
                logger.error('%s failed: %s', request.path, e)
                return _error(str(e), 502)
        return wrapped

    def _party_or_error(name):
        if not name:
            return None, _error('Missing party', 400)
        party = find_party(fetch_parties(app.script_client), name)
        if party is None:
            return None, _error(f"Party '{name}' not found", 404)
        return party, None

    @app.route('/')
    def index():
        return send_from_directory(WEB_DIR, 'index.html')

    @app.route('/api/login', methods=['POST'])
    def login():
        body = request.get_json(silent=True) or request.form
        user = str(body.get('username', ''))
        pwd = str(body.get('password', ''))
        ok = (hmac.compare_digest(user.encode('utf-8'), username.encode('utf-8'))
              & hmac.compare_digest(pwd.encode('utf-8'), password.encode('utf-8')))
        if not ok:
            return _error('Invalid username or password', 401)
        session['logged_in'] = True
        return _json({'ok': True})

    @app.route('/api/logout', methods=['POST'])
    def logout():
        session.clear()
        return _json({'ok': True})

    @app.route('/api/session')
    def session_state():
        return _json({'logged_in': bool(session.get('logged_in'))})

    @app.route('/api/parties')
    @login_required
    def parties():
        data = fetch_parties(app.script_client)
        if request.args.get('pending'):
            annotate_pending(data, app.stage_cache)
        return _json({'parties': data})

    @app.route('/api/stages')
    @login_required
    def stages():
        party, err = _party_or_error(request.args.get('party'))
        if err:
            return err
        summaries = analyze_stages(party, app.stage_cache)
        for s in summaries:
            # Raw rows stay server-side; the task view re-extracts them.
            s.pop('party_tasks', None)
        return _json({'party': party, 'stages': summaries})

    @app.route('/api/tasks')
    @login_required
    def tasks():
        party_name = request.args.get('party')
        stage_name = request.args.get('stage')
        if not party_name or not stage_name:
            return _error('Missing party or stage', 400)
        all_tasks = load_tasks(party_name, stage_name, app.stage_cache)
        for task in all_tasks:
            task['tone'] = status_tone(task['status'])
            task['delay_display'] = format_delay(task['delay'])
        shown = filter_tasks(
            all_tasks,
            category=request.args.get('category', ''),
            name=request.args.get('name', ''),
            status=request.args.get('status', ''),
        )
        return _json({
            'party': party_name,
            'stage': stage_name,
            'layout': 'horizontal' if is_horizontal_stage(stage_name) else 'regular',
            'total': len(all_tasks),
            'tasks': shown,
            'options': filter_options(all_tasks),
        })

    @app.route('/api/refresh', methods=['POST'])
    @login_required
    def refresh():
        app.stage_cache = StageCache(app.script_client)
        return _json({'ok': True})

    @app.route('/api/export/csv')
    @login_required
    def export_csv_endpoint():
        """Export the report tables as a ZIP of CSV files."""
        try:
            report = build_report(app.script_client, app.stage_cache, request.args.get('party'))
        except ValueError as e:
            return _error(str(e), 404)

        with tempfile.TemporaryDirectory() as tmpdir:
            files = export_csv(report, tmpdir)
            buf = io.BytesIO()
            with zipfile.ZipFile(buf, 'w', zipfile.ZIP_DEFLATED) as zf:
                for fp in files:
                    zf.write(fp, os.path.basename(fp))
            buf.seek(0)
            return send_file(
                buf,
                mimetype='application/zip',
                as_attachment=True,
                download_name='pms-report.zip'
            )

    @app.route('/api/export/xlsx')
    @login_required
    def export_xlsx_endpoint():
        try:
            report = build_report(app.script_client, app.stage_cache, request.args.get('party'))
        except ValueError as e:
            return _error(str(e), 404)

        with tempfile.NamedTemporaryFile(suffix='.xlsx', delete=False) as tmp:
            tmp_path = tmp.name
        try:
            export_xlsx(report, tmp_path)
            with open(tmp_path, 'rb') as f:
                buf = io.BytesIO(f.read())
        finally:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        return send_file(
            buf,
            mimetype='application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
            as_attachment=True,
            download_name='pms-report.xlsx'
        )

    return app


def run_server(client, host='127.0.0.1', port=8080, **auth):
    app = create_app(client, **auth)
    app.run(host=host, port=port, debug=False, threaded=True)
