from flask import Blueprint, current_app, request
import os

from . import engine
from .datastore import (
    backend_name,
    check_connection as ds_check_connection,
    delete_event as ds_delete_event,
    delete_session as ds_delete_session,
    get_session as ds_get_session,
    list_sessions as ds_list_sessions,
    load_event as ds_load_event,
    save_event as ds_save_event,
    save_session as ds_save_session,
)
from .errors import EventValidationError, RoundClosedError, SessionNotFound
from .sessions import create_session, reallocate_session, session_table


bp = Blueprint('main', __name__)

DEFAULT_KART_NUMBERS = os.environ.get('KART_DEFAULT_KART_NUMBERS', '1,2,3,4,5,6,7,8,9,10')


@bp.errorhandler(EventValidationError)
def _validation_error(exc):
    return {'error': str(exc)}, 400


@bp.errorhandler(RoundClosedError)
def _round_closed(exc):
    return {'error': str(exc)}, 409


@bp.errorhandler(SessionNotFound)
def _session_not_found(exc):
    return {'error': str(exc)}, 404


def _kart_numbers_from(value) -> list[int]:
    """Accept either the raw text field or a JSON list from the setup form."""
    if isinstance(value, list):
        value = ','.join(str(v) for v in value)
    return engine.parse_kart_numbers(value if isinstance(value, str) else '')


def _json_object() -> dict:
    """Request body as a dict; an empty body counts as {}."""
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise EventValidationError('Request body must be a JSON object.')
    return payload


def _driver_names_from(payload: dict) -> list:
    drivers = payload.get('drivers')
    if drivers is None:
        return []
    if not isinstance(drivers, list):
        raise EventValidationError('drivers must be a list of names.')
    return drivers


def _load_event_or_500():
    try:
        return ds_load_event(), None
    except Exception:  # pylint: disable=broad-except
        current_app.logger.exception('GET /api/event failed')
        return None, ({'error': 'Failed to load event'}, 500)


def _persist(state: dict, status: int = 200):
    """Save a command's result; the caller's previous state stays stored on failure."""
    try:
        ds_save_event(state)
    except Exception:  # pylint: disable=broad-except
        current_app.logger.exception('save_event failed round=%s', state.get('current_round'))
        return {'error': 'Failed to save event'}, 500
    return state, status


@bp.route('/health/db')
def health_db():
    """Datastore connectivity report. Always HTTP 200."""
    try:
        info = ds_check_connection()
    except Exception as e:  # pragma: no cover - best-effort health output
        return {'connected': False, 'backend': backend_name(), 'status': 'error', 'error': str(e)}
    return {'connected': True, 'backend': backend_name(), 'status': 'ok', **info}


@bp.route('/api/event', methods=['GET'])
def get_event():
    state, err = _load_event_or_500()
    if err:
        return err
    # Flask will not serialise a bare None
    return current_app.json.response(state)


@bp.route('/api/event', methods=['PUT'])
def replace_event():
    """Store a whole event document; an empty or JSON null body clears it."""
    raw = request.get_data(as_text=True).strip()
    state = None
    if raw not in ('', 'null'):
        state = request.get_json(silent=True)
        if not isinstance(state, dict):
            return {'error': 'Event document must be a JSON object or null.'}, 400
    try:
        if state is None:
            ds_delete_event()
        else:
            ds_save_event(state)
    except Exception:  # pylint: disable=broad-except
        current_app.logger.exception('PUT /api/event failed')
        return {'error': 'Failed to save event'}, 500
    return {'ok': True}


@bp.route('/api/event', methods=['DELETE'])
def reset_event():
    state = engine.reset_event()
    try:
        if state is None:
            ds_delete_event()
        else:
            ds_save_event(state)
    except Exception:  # pylint: disable=broad-except
        current_app.logger.exception('DELETE /api/event failed')
        return {'error': 'Failed to reset event'}, 500
    current_app.logger.info('event_reset')
    return {'ok': True}


@bp.route('/api/event/setup', methods=['POST'])
def setup_event():
    payload = _json_object()
    kart_numbers = _kart_numbers_from(payload.get('kart_numbers', DEFAULT_KART_NUMBERS))
    state = engine.setup_event(
        payload.get('category', 'below'),
        _driver_names_from(payload),
        kart_numbers,
        name=payload.get('name'),
    )
    current_app.logger.info(
        'event_setup drivers=%s karts=%s category=%s',
        len(state['drivers']), len(kart_numbers), state['category'],
    )
    return _persist(state, 201)


@bp.route('/api/event/results', methods=['POST'])
def submit_results():
    payload = _json_object()
    positions = payload.get('positions') or {}
    if not isinstance(positions, dict):
        raise EventValidationError('positions must map driver ids to finishing positions.')
    state, err = _load_event_or_500()
    if err:
        return err
    round_name = (state or {}).get('current_round')
    new_state = engine.record_round_results(state, positions)
    current_app.logger.info(
        'round_recorded round=%s next=%s drivers=%s',
        round_name, new_state['current_round'], len(new_state['drivers']),
    )
    return _persist(new_state)


@bp.route('/api/event/grid')
def event_grid():
    state, err = _load_event_or_500()
    if err:
        return err
    if not state:
        raise RoundClosedError('No active event. Set up an event first.')
    current = state.get('current_round')
    rows = []
    for driver in engine.grid_order(state):
        result = engine.round_result(driver, current) or {}
        rows.append({
            'driver_id': driver.get('id'),
            'name': driver.get('name'),
            'kart_number': driver.get('current_kart_number'),
            'position': result.get('position'),
            'points': result.get('points', 0),
            'total_points': driver.get('total_points', 0),
        })
    return {
        'name': state.get('name'),
        'round': current,
        'round_title': engine.round_title(current),
        'category': state.get('category'),
        'category_label': engine.category_label(state.get('category')),
        'drivers': rows,
    }


@bp.route('/api/event/standings')
def event_standings():
    state, err = _load_event_or_500()
    if err:
        return err
    return {'standings': engine.final_standings(state)}


@bp.route('/api/kart-numbers/parse')
def parse_kart_numbers():
    text = request.args.get('input', DEFAULT_KART_NUMBERS)
    return {'kart_numbers': engine.parse_kart_numbers(text)}


@bp.route('/api/sessions', methods=['GET'])
def list_sessions():
    sessions = ds_list_sessions()
    return {'sessions': [{**s, 'drivers': session_table(s)} for s in sessions]}


@bp.route('/api/sessions', methods=['POST'])
def new_session():
    payload = _json_object()
    session = create_session(
        payload.get('name', ''),
        payload.get('category', 'below'),
        _driver_names_from(payload),
        _kart_numbers_from(payload.get('kart_numbers', DEFAULT_KART_NUMBERS)),
    )
    ds_save_session(session)
    current_app.logger.info('session_created id=%s drivers=%s', session['id'], len(session['drivers']))
    return session, 201


@bp.route('/api/sessions/<session_id>/reallocate', methods=['POST'])
def reallocate(session_id):
    session = ds_get_session(session_id)
    if not session:
        raise SessionNotFound(session_id)
    updated = reallocate_session(session)
    ds_save_session(updated)
    return updated


@bp.route('/api/sessions/<session_id>', methods=['DELETE'])
def delete_session(session_id):
    if not ds_delete_session(session_id):
        raise SessionNotFound(session_id)
    return {'ok': True}
