"""
Tests for configuration loading and validation.
"""

from dealbot.config import Config, _env_bool, config


class TestConfigDefaults:
    def test_batch_defaults(self):
        assert isinstance(Config.DEAL_MAX_CONCURRENCY, int)
        assert Config.DEAL_MAX_CONCURRENCY >= 1
        assert Config.MIN_UPLOAD_SIZE <= Config.MAX_UPLOAD_SIZE

    def test_singleton(self):
        assert isinstance(config, Config)


class TestEnvBool:
    def test_truthy_values(self, monkeypatch):
        for value in ('1', 'true', 'TRUE', ' yes ', 'on'):
            monkeypatch.setenv('DEALBOT_TEST_FLAG', value)
            assert _env_bool('DEALBOT_TEST_FLAG') is True

    def test_falsy_values(self, monkeypatch):
        for value in ('0', 'false', 'no', ''):
            monkeypatch.setenv('DEALBOT_TEST_FLAG', value)
            assert _env_bool('DEALBOT_TEST_FLAG') is False

    def test_default(self, monkeypatch):
        monkeypatch.delenv('DEALBOT_TEST_FLAG', raising=False)
        assert _env_bool('DEALBOT_TEST_FLAG') is False
        assert _env_bool('DEALBOT_TEST_FLAG', 'true') is True


class TestValidate:
    def test_reports_missing_keys(self, monkeypatch):
        monkeypatch.setattr(Config, 'DATABASE_URL', '')
        monkeypatch.setattr(Config, 'WALLET_ADDRESS', '')

        assert Config.validate() == ['DATABASE_URL', 'WALLET_ADDRESS']

    def test_valid_configuration(self, monkeypatch):
        monkeypatch.setattr(Config, 'DATABASE_URL', 'postgresql://localhost/dealbot')
        monkeypatch.setattr(Config, 'WALLET_ADDRESS', '0xwallet')

        assert Config.validate() == []
