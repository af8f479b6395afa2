#!/usr/bin/env python3
"""
Pipeline trigger tests - argument validation and exit codes
"""
import asyncio
from argparse import Namespace
from unittest.mock import Mock

import pytest

import config
import run_pipeline
from scripts.keyword_scanner.conftest import FakeGateway, StaticFetcher, make_candidate
from scripts.keyword_scanner.errors import MisconfiguredCredential
from scripts.keyword_scanner.orchestrator import SourceOrchestrator
from scripts.keyword_scanner.scanner import KeywordScanner
from scripts.keyword_scanner.sources import SourceRegistry


def args(**kwargs):
    base = {'mode': 'batch', 'keyword_id': None, 'max_results': None, 'deadline': None,
            'analytics_mode': None, 'jsonl_out': None, 'dry_run': False, 'debug': False}
    base.update(kwargs)
    return Namespace(**base)


class TestPipelineCli:

    def setup_method(self):
        self.app_config = Mock(raw={}, twitter_bearer_token='token')
        self.app_config.pipeline_config.log_file = 'sentinel_pipeline.log'
        self.gateway = FakeGateway(keywords=[{'id': 'kw1', 'term': 'Kinshasa', 'priority': 'high'}])
        self.fetcher = StaticFetcher('x_api', [make_candidate('x_api', '1')])

    def _patch(self, monkeypatch):
        monkeypatch.setattr(run_pipeline, 'get_config', lambda: self.app_config)
        monkeypatch.setattr(run_pipeline, 'SentinelDatabase', lambda app_config: self.gateway)
        monkeypatch.setattr(run_pipeline, 'configure_logging', lambda log_file, debug=False: None)

        def fake_build_scanner(gateway, config, bearer_token, dry_run=False, jsonl_out=None):
            orchestrator = SourceOrchestrator(SourceRegistry([self.fetcher]))
            return KeywordScanner(gateway, orchestrator, config=config, dry_run=dry_run)

        monkeypatch.setattr(run_pipeline, 'build_scanner', fake_build_scanner)

    @pytest.mark.parametrize('mode', ['keyword', 'created'])
    def test_keyword_modes_require_id(self, mode):
        with pytest.raises(SystemExit) as exc:
            run_pipeline.main(['--mode', mode])
        assert exc.value.code == 2

    def test_configuration_error_exits_one(self, monkeypatch):
        def broken():
            raise ValueError("Configuration file not found: config.json")

        monkeypatch.setattr(run_pipeline, 'get_config', broken)
        assert run_pipeline.main(['--mode', 'batch']) == run_pipeline.EXIT_FAILED

    def test_missing_supabase_credentials_exit_two(self, monkeypatch, tmp_path):
        config_file = tmp_path / 'config.json'
        config_file.write_text('{"pipeline_config": {"name": "sentinel"}}', encoding='utf-8')
        monkeypatch.delenv('SUPABASE_URL', raising=False)
        monkeypatch.setenv('SUPABASE_KEY', 'service-key')
        monkeypatch.setattr(run_pipeline, 'get_config', lambda: config.load_config(str(config_file)))
        config.reset_config()

        try:
            assert run_pipeline.main(['--mode', 'batch']) == run_pipeline.EXIT_CREDENTIALS
        finally:
            config.reset_config()

    def test_batch_mode_succeeds(self, monkeypatch):
        self._patch(monkeypatch)

        assert run_pipeline.main(['--mode', 'batch']) == run_pipeline.EXIT_OK
        assert 'x_api_1' in self.gateway.mentions

    def test_created_mode_uses_small_fetch(self, monkeypatch):
        self._patch(monkeypatch)

        assert run_pipeline.main(['--mode', 'created', '--keyword-id', 'kw1']) == run_pipeline.EXIT_OK
        assert self.fetcher.jobs[0].max_results == 10

    def test_unknown_keyword_fails(self, monkeypatch):
        self._patch(monkeypatch)
        assert run_pipeline.main(['--mode', 'keyword', '--keyword-id', 'nope']) == run_pipeline.EXIT_FAILED

    def test_credential_error_exits_two(self, monkeypatch):
        self._patch(monkeypatch)
        self.fetcher.error = MisconfiguredCredential('X API rejected credentials (HTTP 401)')

        assert run_pipeline.main(['--mode', 'batch']) == run_pipeline.EXIT_CREDENTIALS

    def test_runner_records_errors(self, monkeypatch):
        self._patch(monkeypatch)
        self.gateway.fail_on = {'batch_upsert'}
        runner = run_pipeline.SentinelPipelineRunner(args())

        assert asyncio.run(runner.run()) is False
        assert runner.stats['keywords'] == 1
        assert runner.stats['errors'][0].startswith('Kinshasa: persistence failure')
