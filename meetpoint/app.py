from flask import Flask, request, jsonify, g
from flask_cors import CORS
import logging
from time import perf_counter

from .config import get_settings
from .engine import MeetingPointEngine
from .errors import InvalidParticipant, MidpointError, ProviderNotConfigured

logger = logging.getLogger(__name__)


def configure_logging(settings) -> None:
    handlers = [logging.StreamHandler()]
    if settings.log_file:
        handlers.append(logging.FileHandler(settings.log_file))
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )


def _build_engine(settings):
    logger.info(f"API Key found: {'Yes' if settings.maps_configured else 'No'}")
    if not settings.maps_configured:
        logger.warning("GOOGLE_MAPS_API_KEY not configured; midpoint endpoints are disabled")
        return None
    try:
        logger.info("Initializing Google Maps service...")
        engine = MeetingPointEngine.from_settings(settings)
        logger.info("Google Maps service initialized successfully")
        return engine
    except ValueError as e:
        logger.error(f"Error initializing Google Maps service: {e}")
        return None


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise InvalidParticipant('JSON data is required')
    return data


def _as_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).lower() in ('1', 'true', 'yes')


def create_app(engine=None, settings=None) -> Flask:
    """Build the API. ``engine`` may be injected (tests); otherwise it is
    created from the environment when a Maps key is configured."""
    settings = settings or get_settings()
    if engine is None:
        engine = _build_engine(settings)

    app = Flask(__name__)
    CORS(app)  # Enable CORS for all routes
    app.config['ENGINE'] = engine

    def require_engine() -> MeetingPointEngine:
        current = app.config.get('ENGINE')
        if current is None:
            logger.error("Google Maps API key not configured - cannot process request")
            raise ProviderNotConfigured()
        return current

    # Per-request timing: record start time and log duration on completion
    @app.before_request
    def _start_timer():
        g._start_time = perf_counter()

    @app.after_request
    def _log_request_duration(response):
        start = getattr(g, '_start_time', None)
        if start is not None:
            duration_ms = (perf_counter() - start) * 1000.0
            response.headers['X-Process-Time-ms'] = f"{duration_ms:.1f}"
            logger.info(
                "request completed: method=%s path=%s status=%s duration_ms=%.1f remote_addr=%s",
                request.method,
                request.full_path if request.query_string else request.path,
                response.status_code,
                duration_ms,
                request.remote_addr,
            )
        return response

    @app.teardown_request
    def _teardown_request_log(error=None):
        # If an unhandled exception occurred, ensure we still log duration
        if error is not None:
            start = getattr(g, '_start_time', None)
            duration_ms = (perf_counter() - start) * 1000.0 if start is not None else None
            logger.error(
                "request error: method=%s path=%s duration_ms=%s error=%s",
                request.method,
                request.path,
                f"{duration_ms:.1f}" if duration_ms is not None else 'unknown',
                repr(error),
            )

    @app.route('/', methods=['GET'])
    def health_check():
        """Health check endpoint"""
        return jsonify({
            'message': 'Meetpoint API is running!',
            'endpoints': {
                'geocode': '/api/geocode',
                'midpoint': '/api/midpoint',
                'midpoint_by_time': '/api/midpoint-by-time',
                'routes_to_point': '/api/routes-to-point',
                'cache_stats': '/api/cache/stats',
                'health': '/'
            },
            'mapsConfigured': app.config.get('ENGINE') is not None,
            'status': 'healthy'
        })

    @app.route('/api/geocode', methods=['POST'])
    def geocode_address():
        """
        Geocode a single address
        Expected JSON: {"address": "123 Main St, City, State"}
        """
        engine = require_engine()
        data = _json_body()
        address = data.get('address')
        if not address:
            logger.error("Address not provided in request")
            raise InvalidParticipant('Address is required')

        logger.info(f"Attempting to geocode address: '{address}'")
        result = engine.geocode_address(address)
        if not result:
            logger.warning(f"Failed to geocode address: '{address}'")
            return jsonify({
                'success': False,
                'error': 'Could not geocode the provided address'
            }), 404
        return jsonify({
            'success': True,
            'data': {
                'formattedAddress': result['formatted_address'],
                'lat': result['lat'],
                'lng': result['lng']
            }
        })

    @app.route('/api/midpoint', methods=['POST'])
    def midpoint():
        """
        Geometric midpoint with address, suggestions and travel times
        Expected JSON: {"participants": [{"id", "lat", "lng", "travelMode"}, ...], "scope": "event:1"}
        """
        engine = require_engine()
        data = _json_body()
        result = engine.compute_geometric_midpoint(data.get('participants'), scope=data.get('scope'))
        return jsonify(result)

    @app.route('/api/midpoint-by-time', methods=['POST'])
    def midpoint_by_time():
        """
        Time-optimized meeting venue
        Expected JSON: {
            "participants": [...],
            "objective": "minimize_total" | "minimize_max",  // optional, defaults to minimize_total
            "forceRecalculate": false,                        // optional
            "scope": "event:1"                                // optional
        }
        """
        engine = require_engine()
        data = _json_body()
        participants = data.get('participants')
        logger.info(
            f"Time midpoint request: {len(participants) if isinstance(participants, list) else 0} participants, "
            f"objective={data.get('objective')}, force={data.get('forceRecalculate')}"
        )

        _algo_start = perf_counter()
        result = engine.compute_time_optimized_midpoint(
            participants,
            objective=data.get('objective') or 'minimize_total',
            force_recalculate=_as_bool(data.get('forceRecalculate', False)),
            scope=data.get('scope'),
        )
        _compute_ms = (perf_counter() - _algo_start) * 1000.0
        logger.info("Time to find midpoint = %.1f ms (cached=%s)", _compute_ms, result.get('cached'))

        response = jsonify(result)
        response.headers['X-Compute-Time-ms'] = f"{_compute_ms:.1f}"
        return response

    @app.route('/api/routes-to-point', methods=['POST'])
    def routes_to_point():
        """
        Routes from every participant to a target point
        Expected JSON: {"participants": [...], "target": {"lat": 25.03, "lng": 121.56}, "scope": "event:1"}
        """
        engine = require_engine()
        data = _json_body()
        if not data.get('target'):
            raise InvalidParticipant('target is required')
        result = engine.compute_routes_to_point(
            data.get('participants'), data['target'], scope=data.get('scope')
        )
        return jsonify(result)

    @app.route('/api/cache/stats', methods=['GET'])
    def cache_stats():
        engine = require_engine()
        return jsonify(engine.cache.stats())

    @app.errorhandler(MidpointError)
    def handle_midpoint_error(error):
        logger.warning(f"{error.code}: {error.message}")
        return jsonify(error.to_dict()), error.http_status

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'code': 'NOT_FOUND', 'message': 'Endpoint not found'}), 404

    @app.errorhandler(500)
    def internal_error(error):
        return jsonify({'code': 'INTERNAL_ERROR', 'message': 'Internal server error'}), 500

    return app


def create_default_app() -> Flask:
    settings = get_settings()
    configure_logging(settings)
    return create_app(settings=settings)


if __name__ == '__main__':
    app = create_default_app()
    settings = get_settings()
    if not settings.maps_configured:
        print("\n" + "="*50)
        print("SETUP REQUIRED:")
        print("="*50)
        print("1. Get a Google Maps API key from: https://console.cloud.google.com/")
        print("2. Enable the following APIs:")
        print("   - Geocoding API")
        print("   - Directions API")
        print("   - Distance Matrix API")
        print("   - Places API")
        print("3. Set GOOGLE_MAPS_API_KEY in your environment or .env file")
        print("4. Restart the app")
        print("="*50)
        print("API will start but most features will be disabled without a valid key\n")
    app.run(host='0.0.0.0', port=5000, debug=True)
