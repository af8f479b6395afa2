#!/usr/bin/env python3
"""
Unified Config Resolver for the Sentinel keyword scanner
Handles CLI > ENV > config > defaults resolution and logs final values
"""
import copy
import os
import json
import logging
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)

MAX_RESULTS_RANGE = (1, 500)
ANALYTICS_MODES = ('batch', 'cumulative')

DEFAULTS: Dict[str, Any] = {
    'keyword_scanner': {
        'max_results': 100,
        'source_timeout_s': 60,
        'run_deadline_s': 480,
        'critical_limit': 5,
        'critical_max_results': 5,
        'created_max_results': 10,
        'request_delay_s': 1.0,
        'analytics': {
            'mode': 'batch',
            'include_estimated': False,
            'window': 500,
        },
        'browser': {
            'headless': True,
            'navigation_timeout_ms': 30000,
            'selector_timeout_ms': 15000,
        },
        'logging': {
            'jsonl': False,
        },
    },
    'rate_limits': {
        'safety_margin': 10,
        'high_usage_delay_s': 5.0,
        'moderate_usage_delay_s': 2.0,
        'endpoints': {
            'search': {'requests': 450, 'window_s': 900},
            'tweets': {'requests': 300, 'window_s': 900},
            'users': {'requests': 900, 'window_s': 900},
        },
    },
    'sentiment': {
        'lexicon': {},
    },
}


def load_config(path: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """Load configuration from config.json with fallback handling"""
    possible_paths = [path] if path else [
        "config.json",
        "../config.json",
        "../../config.json",
        os.path.join(os.path.dirname(__file__), "../../config.json"),
    ]

    config_path = next((p for p in possible_paths if os.path.exists(p)), None)
    if not config_path:
        logger.warning(f"Config file not found in any of {possible_paths}, using defaults")
        return None

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            config = json.load(f)
        logger.debug(f"Loaded config from {config_path}")
        return config
    except (json.JSONDecodeError, IOError) as e:
        logger.error(f"Failed to load config from {config_path}: {e}")
        return None


def _clamp_max_results(value: int) -> int:
    low, high = MAX_RESULTS_RANGE
    return max(low, min(high, int(value)))


def resolve_config(cli_args=None, base_config: Optional[Dict[str, Any]] = None,
                   env: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """Single function that returns final config values (CLI > ENV > config > defaults) and logs them"""
    env = os.environ if env is None else env
    final_config = copy.deepcopy(DEFAULTS)

    if base_config is None:
        base_config = load_config()
    if base_config:
        _deep_merge(final_config, base_config)

    scanner = final_config['keyword_scanner']

    # ENV overrides config.json
    if env.get('SCANNER_MAX_RESULTS'):
        try:
            scanner['max_results'] = int(env['SCANNER_MAX_RESULTS'])
        except ValueError:
            logger.warning(f"Ignoring invalid SCANNER_MAX_RESULTS={env['SCANNER_MAX_RESULTS']!r}")
    if env.get('SCANNER_DEADLINE_S'):
        try:
            scanner['run_deadline_s'] = float(env['SCANNER_DEADLINE_S'])
        except ValueError:
            logger.warning(f"Ignoring invalid SCANNER_DEADLINE_S={env['SCANNER_DEADLINE_S']!r}")
    if env.get('ANALYTICS_MODE'):
        scanner['analytics']['mode'] = env['ANALYTICS_MODE']

    # CLI overrides everything
    if cli_args is not None:
        if getattr(cli_args, 'max_results', None):
            scanner['max_results'] = cli_args.max_results
        if getattr(cli_args, 'deadline', None):
            scanner['run_deadline_s'] = cli_args.deadline
        if getattr(cli_args, 'analytics_mode', None):
            scanner['analytics']['mode'] = cli_args.analytics_mode

    scanner['max_results'] = _clamp_max_results(scanner['max_results'])
    if scanner['analytics']['mode'] not in ANALYTICS_MODES:
        logger.warning(f"Unknown analytics mode {scanner['analytics']['mode']!r}, using 'batch'")
        scanner['analytics']['mode'] = 'batch'

    logger.info("📋 RESOLVED CONFIG:")
    logger.info(f"  max_results: {scanner['max_results']}")
    logger.info(f"  source_timeout_s: {scanner['source_timeout_s']}")
    logger.info(f"  run_deadline_s: {scanner['run_deadline_s']}")
    logger.info(f"  analytics: mode={scanner['analytics']['mode']}, "
                f"include_estimated={scanner['analytics']['include_estimated']}")
    logger.info(f"  rate_limits.safety_margin: {final_config['rate_limits']['safety_margin']}")

    return final_config


def _deep_merge(target: Dict[str, Any], source: Dict[str, Any]) -> None:
    """Deep merge source dict into target dict"""
    for key, value in source.items():
        if key in target and isinstance(target[key], dict) and isinstance(value, dict):
            _deep_merge(target[key], value)
        else:
            target[key] = value
