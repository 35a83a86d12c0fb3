from datetime import datetime

import logging
import os
from dotenv import load_dotenv
from flask import Flask, jsonify, request
from flask_cors import CORS

# Load env vars from root directory (parent of backend)
root_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), '../../'))
load_dotenv(os.path.join(root_dir, '.env'))

logging.basicConfig(
    level=os.getenv('LOG_LEVEL', 'INFO').upper(),
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
)
logger = logging.getLogger(__name__)

from tutoring.routes.classes import classes_bp
from tutoring.routes.people import people_bp
from tutoring.services.record_store import RecordStoreError, get_record_store
from tutoring.services.supabase_client import SUPABASE_ANON_KEY, SUPABASE_SERVICE_KEY, SUPABASE_URL

app = Flask(__name__)
CORS(app)


# ============================================================================
# Global Error Handlers and Request Validation
# ============================================================================

def _make_json_error(message: str, status_code: int, error_type: str = None):
    """Create a standardized JSON error response."""
    response_data = {
        'error': message,
        'status_code': status_code
    }
    if error_type:
        response_data['type'] = error_type
    response = jsonify(response_data)
    response.status_code = status_code
    return response


@app.errorhandler(400)
def handle_bad_request(error):
    message = str(error.description) if getattr(error, 'description', None) else 'Bad request'
    return _make_json_error(message, 400, 'bad_request')


@app.errorhandler(404)
def handle_not_found(error):
    return _make_json_error('The requested resource was not found', 404, 'not_found')


@app.errorhandler(405)
def handle_method_not_allowed(error):
    return _make_json_error('Method not allowed', 405, 'method_not_allowed')


@app.errorhandler(500)
def handle_internal_error(error):
    logger.error(f"Internal server error: {error}")
    return _make_json_error('Internal server error', 500, 'internal_error')


@app.errorhandler(503)
def handle_service_unavailable(error):
    return _make_json_error('Service temporarily unavailable', 503, 'service_unavailable')


@app.errorhandler(Exception)
def handle_unhandled_exception(error):
    """Catch-all handler for unhandled exceptions."""
    logger.exception(f"Unhandled exception: {type(error).__name__}: {error}")
    return _make_json_error('An unexpected error occurred', 500, 'unhandled_exception')


@app.before_request
def validate_json_content():
    """Reject unparseable JSON bodies before they reach a route."""
    if request.method == 'OPTIONS':
        return None
    if request.content_type and 'application/json' in request.content_type:
        if request.content_length and request.content_length > 0:
            try:
                request.get_json(force=False, silent=False)
            except Exception:
                return _make_json_error('Invalid JSON in request body', 400, 'invalid_json')
    return None


# ============================================================================
# Health
# ============================================================================

@app.route('/health', methods=['GET'])
def health():
    return jsonify({'status': 'ok', 'timestamp': datetime.utcnow().isoformat()}), 200


@app.route('/health/config', methods=['GET'])
def health_config():
    """Reports which settings are present (never their values)."""
    return jsonify({
        'status': 'ok',
        'timestamp': datetime.utcnow().isoformat(),
        'record_store': get_record_store().backend_name,
        'supabase_url_set': bool(SUPABASE_URL),
        'supabase_anon_key_set': bool(SUPABASE_ANON_KEY),
        'supabase_service_key_set': bool(SUPABASE_SERVICE_KEY),
        'debug_mode': os.getenv('DEBUG', 'true').lower() == 'true',
    }), 200


@app.route('/health/store', methods=['GET'])
def health_store():
    try:
        store = get_record_store()
        reachable = store.ping()
    except RecordStoreError as e:
        logger.warning(f"Record store health check failed: {e}")
        return _make_json_error('Record store misconfigured', 503, 'service_unavailable')
    if not reachable:
        return _make_json_error('Record store unreachable', 503, 'service_unavailable')
    return jsonify({'status': 'ok', 'record_store': store.backend_name}), 200


app.register_blueprint(people_bp)
app.register_blueprint(classes_bp)

if __name__ == '__main__':
    explicit_backend_port = os.getenv('SERVER_PORT')
    port = int(explicit_backend_port or os.getenv('PORT', 5000))
    host = os.getenv('HOST', '0.0.0.0')
    debug_mode = os.getenv('DEBUG', 'true').lower() == 'true'
    app.run(host=host, port=port, debug=debug_mode)
