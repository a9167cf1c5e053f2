from __future__ import annotations

from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest
import yaml

import facturador.config as config_mod
from facturador.utils.policy import ElectronicInvoicePolicy


class TestResolveDir:
    def test_from_env_var(self, monkeypatch, tmp_path):
        monkeypatch.setenv("FACTURADOR_CONFIG_DIR", str(tmp_path))
        assert config_mod.get_config_dir() == tmp_path

    def test_project_root_fallback(self, monkeypatch, tmp_path):
        monkeypatch.delenv("FACTURADOR_DATA_DIR", raising=False)
        fake_pkg = tmp_path / "src" / "facturador"
        fake_pkg.mkdir(parents=True)
        data_dir = tmp_path / "data"
        data_dir.mkdir()
        monkeypatch.setattr(config_mod, "__file__", str(fake_pkg / "config.py"))
        assert config_mod.get_data_dir() == data_dir

    @pytest.mark.parametrize("env_var,subdir,kind", [
        ("FACTURADOR_CONFIG_DIR", "config", "config"),
        ("FACTURADOR_DATA_DIR", "data", "data"),
    ])
    def test_platformdirs_fallback(self, monkeypatch, tmp_path, env_var, subdir, kind):
        monkeypatch.delenv(env_var, raising=False)
        fake = tmp_path / "nowhere" / "src" / "facturador"
        fake.mkdir(parents=True)
        monkeypatch.setattr(config_mod, "__file__", str(fake / "config.py"))
        result = config_mod._resolve_dir(env_var, subdir, kind=kind)
        assert config_mod.APP_NAME in str(result)

    def test_dotenv_dir_none_when_missing(self, monkeypatch, tmp_path):
        monkeypatch.delenv("FACTURADOR_CONFIG_DIR", raising=False)
        fake = tmp_path / "nowhere" / "src" / "facturador"
        fake.mkdir(parents=True)
        monkeypatch.setattr(config_mod, "__file__", str(fake / "config.py"))
        with patch("facturador.config.platformdirs.user_config_dir", return_value=str(fake / "pd")):
            assert config_mod._resolve_config_dir_for_dotenv() is None


class TestCertEnv:
    def test_cert_path(self, monkeypatch):
        monkeypatch.setenv("CERT_PFX_PATH", "/certs/issuer.pfx")
        assert config_mod.get_cert_path() == "/certs/issuer.pfx"

    def test_cert_path_missing(self, monkeypatch):
        monkeypatch.delenv("CERT_PFX_PATH", raising=False)
        with pytest.raises(KeyError):
            config_mod.get_cert_path()

    def test_password_env_first(self, monkeypatch):
        monkeypatch.setenv("CERT_PFX_PASSWORD", "from-env")
        with patch.object(config_mod, "_get_keyring_password", return_value="from-keyring"):
            assert config_mod.get_cert_password() == "from-env"

    def test_password_keyring_fallback(self, monkeypatch):
        monkeypatch.delenv("CERT_PFX_PASSWORD", raising=False)
        with patch.object(config_mod, "_get_keyring_password", return_value="from-keyring"):
            assert config_mod.get_cert_password() == "from-keyring"

    def test_password_missing(self, monkeypatch):
        monkeypatch.delenv("CERT_PFX_PASSWORD", raising=False)
        with (
            patch.object(config_mod, "_get_keyring_password", return_value=None),
            pytest.raises(KeyError),
        ):
            config_mod.get_cert_password()


class TestKeyringHelpers:
    def test_get(self):
        mock_kr = MagicMock()
        mock_kr.get_password.return_value = "stored-pw"
        with patch.dict("sys.modules", {"keyring": mock_kr}):
            assert config_mod._get_keyring_password() == "stored-pw"
        mock_kr.get_password.assert_called_once_with(
            config_mod.KEYRING_SERVICE, config_mod.KEYRING_USERNAME
        )

    def test_get_backend_failure(self):
        mock_kr = MagicMock()
        mock_kr.get_password.side_effect = RuntimeError("no backend")
        with patch.dict("sys.modules", {"keyring": mock_kr}):
            assert config_mod._get_keyring_password() is None

    def test_set(self):
        mock_kr = MagicMock()
        with patch.dict("sys.modules", {"keyring": mock_kr}):
            assert config_mod._set_keyring_password("pw123") is True

    def test_set_failure(self):
        mock_kr = MagicMock()
        mock_kr.set_password.side_effect = RuntimeError("locked")
        with patch.dict("sys.modules", {"keyring": mock_kr}):
            assert config_mod._set_keyring_password("pw") is False

    def test_delete_failure(self):
        mock_kr = MagicMock()
        mock_kr.delete_password.side_effect = RuntimeError("not found")
        with patch.dict("sys.modules", {"keyring": mock_kr}):
            assert config_mod._delete_keyring_password() is False


class TestYaml:
    def test_load_yaml(self, tmp_path):
        f = tmp_path / "credentials.yaml"
        f.write_text(yaml.dump({"tax_id": "20-12345678-6"}))
        assert config_mod.load_yaml(f) == {"tax_id": "20-12345678-6"}

    def test_empty_yaml(self, tmp_path):
        f = tmp_path / "credentials.yaml"
        f.write_text("")
        assert config_mod.load_yaml(f) == {}

    def test_load_issuer(self, monkeypatch, tmp_path):
        (tmp_path / "credentials.yaml").write_text(yaml.dump({"point_of_sale": 3}))
        monkeypatch.setattr(config_mod, "get_config_dir", lambda: tmp_path)
        assert config_mod.load_issuer() == {"point_of_sale": 3}

    def test_load_issuer_missing(self, monkeypatch, tmp_path):
        monkeypatch.setattr(config_mod, "get_config_dir", lambda: tmp_path)
        with pytest.raises(FileNotFoundError):
            config_mod.load_issuer()


class TestRuntimeSettings:
    def test_retry_interval_default(self, monkeypatch):
        monkeypatch.delenv("FACTURADOR_RETRY_INTERVAL", raising=False)
        assert config_mod.get_retry_interval() == 300.0

    def test_retry_interval_disabled(self, monkeypatch):
        monkeypatch.setenv("FACTURADOR_RETRY_INTERVAL", "0")
        assert config_mod.get_retry_interval() is None

    def test_log_level(self, monkeypatch):
        monkeypatch.setenv("FACTURADOR_LOG_LEVEL", "debug")
        assert config_mod.get_log_level() == "DEBUG"

    def test_policy_unset(self, monkeypatch):
        monkeypatch.delenv("FACTURADOR_ELECTRONIC_THRESHOLD", raising=False)
        monkeypatch.delenv("FACTURADOR_CUSTOMER_DETAILS_THRESHOLD", raising=False)
        policy = config_mod.load_policy()
        assert isinstance(policy, ElectronicInvoicePolicy)
        assert policy.electronic_threshold is None
        assert policy.customer_details_threshold is None

    def test_policy_from_env(self, monkeypatch):
        monkeypatch.setenv("FACTURADOR_ELECTRONIC_THRESHOLD", "10000")
        monkeypatch.setenv("FACTURADOR_CUSTOMER_DETAILS_THRESHOLD", "191624")
        policy = config_mod.load_policy()
        assert policy.electronic_threshold == Decimal("10000")
        assert policy.customer_details_threshold == Decimal("191624")

    def test_environments_have_both_urls(self):
        for env in ("test", "production"):
            assert set(config_mod.ENDPOINTS[env]) == {"api", "auth"}
