#!/usr/bin/env python3
"""Operator HTTP endpoints for the feed importer."""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Optional

from dotenv import load_dotenv
from flask import Flask, jsonify, request
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

from autoposter.config import Config, ConfigurationError
from autoposter.ingestion.feed_poller import FeedNotFoundError, FeedPoller
from autoposter.logging_setup import setup_logging
from autoposter.monitoring.health import PERIODS, MonitoringService
from autoposter.processing.content_processor import ContentProcessor, ImportNotFoundError, LockUnavailableError
from autoposter.processing.maintenance import reset_import
from autoposter.services import build_monitoring, build_poller, build_processor, build_store, build_translator
from autoposter.storage.base import Store

logger = logging.getLogger(__name__)


@dataclass
class Services:
    store: Store
    poller: FeedPoller
    monitoring: MonitoringService
    processor: Optional[ContentProcessor] = None


def build_services(config: Config) -> Services:
    store = build_store(config)
    translator = build_translator(config)
    processor = build_processor(config, store, translator) if translator is not None else None
    return Services(
        store=store,
        poller=build_poller(config, store),
        monitoring=build_monitoring(config, store, translator),
        processor=processor,
    )


def create_app(services: Services) -> Flask:
    app = Flask(__name__)
    app.config['JSON_SORT_KEYS'] = False

    limiter = Limiter(
        key_func=get_remote_address,
        default_limits=["1000 per day", "100 per hour"],
        storage_uri=os.environ.get("RATELIMIT_STORAGE_URI", "memory://"),
    )
    limiter.init_app(app)

    @app.route('/api/feeds/<int:feed_id>/poll', methods=['POST'])
    @limiter.limit("10 per minute")
    def trigger_poll(feed_id: int):
        """Poll one feed now, regardless of its check interval."""
        try:
            result = services.poller.poll_feed(feed_id)
            return jsonify({'success': True, 'result': asdict(result)})
        except FeedNotFoundError as e:
            return jsonify({'success': False, 'error': str(e)}), 404
        except Exception as e:
            logger.error(f"Manual poll of feed {feed_id} failed: {e}")
            return jsonify({'success': False, 'error': str(e)}), 500

    @app.route('/api/feeds/test', methods=['POST'])
    @limiter.limit("20 per minute")
    def test_feed():
        data = request.get_json(silent=True) or {}
        url = str(data.get('url') or '').strip()
        if not url:
            return jsonify({'success': False, 'error': 'url required'}), 400
        try:
            info = services.poller.test_feed(url)
            return jsonify({'success': True, **info})
        except Exception as e:
            logger.warning(f"Feed test failed for {url}: {e}")
            return jsonify({'success': False, 'error': str(e)}), 400

    @app.route('/api/imports/<int:import_id>/process', methods=['POST'])
    @limiter.limit("10 per minute")
    def process_import(import_id: int):
        if services.processor is None:
            return jsonify({'success': False, 'error': 'OPENAI_API_KEY not configured'}), 503
        try:
            post_id = services.processor.process_now(import_id)
            return jsonify({'success': True, 'post_id': post_id})
        except ImportNotFoundError as e:
            return jsonify({'success': False, 'error': str(e)}), 404
        except LockUnavailableError as e:
            return jsonify({'success': False, 'error': str(e)}), 409
        except Exception as e:
            logger.error(f"Processing import {import_id} failed: {e}")
            return jsonify({'success': False, 'error': str(e)}), 500

    @app.route('/api/imports/<int:import_id>/reset', methods=['POST'])
    @limiter.limit("30 per minute")
    def reset_import_route(import_id: int):
        if services.store.get_import(import_id) is None:
            return jsonify({'success': False, 'error': f'Import record {import_id} not found'}), 404
        reset_import(services.store, import_id)
        return jsonify({'success': True})

    @app.route('/api/health')
    @limiter.exempt
    def health_check():
        """Pipeline health; 503 when any check reports an issue."""
        health = services.monitoring.get_system_health()
        body = health.to_dict()
        body['timestamp'] = datetime.now(timezone.utc).isoformat()
        return jsonify(body), 200 if health.healthy else 503

    @app.route('/api/stats')
    def stats():
        period = request.args.get('period', 'today')
        if period not in PERIODS:
            return jsonify({'success': False, 'error': f"period must be one of {', '.join(PERIODS)}"}), 400
        return jsonify(services.monitoring.get_statistics(period).to_dict())

    return app


if __name__ == '__main__':
    load_dotenv()
    setup_logging()
    try:
        config = Config.from_env()
    except ConfigurationError as e:
        logger.error(str(e))
        raise SystemExit(1)

    port = int(os.environ.get('PORT', 5002))
    debug = os.environ.get('FLASK_ENV') == 'development'
    logger.info(f"Starting importer API on port {port}")
    create_app(build_services(config)).run(host='0.0.0.0', port=port, debug=debug, threaded=True)
