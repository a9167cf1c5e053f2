from __future__ import annotations

import os
from decimal import Decimal
from pathlib import Path

import platformdirs
import yaml
from dotenv import load_dotenv

from facturador.utils.policy import ElectronicInvoicePolicy

APP_NAME = "facturador-arca"
KEYRING_SERVICE = APP_NAME
KEYRING_USERNAME = "cert-pfx-password"


def _resolve_config_dir_for_dotenv() -> Path | None:
    """Resolve config dir for .env loading without depending on .env itself.

    Only checks sources available before .env is loaded (shell env var, dev
    layout, an existing platformdirs directory).
    """
    from_env = os.environ.get("FACTURADOR_CONFIG_DIR")
    if from_env:
        return Path(from_env)
    project_root = Path(__file__).resolve().parent.parent.parent
    candidate = project_root / "config"
    if candidate.is_dir():
        return candidate
    pd = Path(platformdirs.user_config_dir(APP_NAME))
    if pd.is_dir():
        return pd
    return None


# cwd first (highest priority), then config dir (won't override)
load_dotenv()
_cfg_dir = _resolve_config_dir_for_dotenv()
if _cfg_dir is not None:
    load_dotenv(_cfg_dir / ".env")


def _resolve_dir(env_var: str, default_subdir: str, kind: str) -> Path:
    """Resolve a directory from env var, repo layout, or platform default."""
    from_env = os.environ.get(env_var)
    if from_env:
        return Path(from_env)
    # src/facturador/config.py -> ../../.. = project root
    project_root = Path(__file__).resolve().parent.parent.parent
    candidate = project_root / default_subdir
    if candidate.is_dir():
        return candidate
    if kind == "config":
        return Path(platformdirs.user_config_dir(APP_NAME))
    return Path(platformdirs.user_data_dir(APP_NAME))


def get_config_dir() -> Path:
    """Resolve config directory. Re-evaluated on each call to pick up env changes."""
    return _resolve_dir("FACTURADOR_CONFIG_DIR", "config", kind="config")


def get_data_dir() -> Path:
    """Resolve data directory. Re-evaluated on each call to pick up env changes."""
    return _resolve_dir("FACTURADOR_DATA_DIR", "data", kind="data")


ENDPOINTS = {
    "test": {
        "api": "https://public-api.arca.com.ar/v1/test",
        "auth": "https://api.auth.arca.com.ar/oauth/token/test",
    },
    "production": {
        "api": "https://public-api.arca.com.ar/v1",
        "auth": "https://api.auth.arca.com.ar/oauth/token",
    },
}

QR_URL = "https://www.afip.gob.ar/fe/qr/"

SUBMIT_TIMEOUT = 60
READ_TIMEOUT = 30

MAX_RECENT_ERRORS = 20


# --- Keyring helpers ---


def _get_keyring_password() -> str | None:
    """Try to get the certificate password from the OS keyring.

    Returns None on any failure (no backend, not stored, dbus errors, etc.).
    """
    try:
        import keyring

        return keyring.get_password(KEYRING_SERVICE, KEYRING_USERNAME)
    except Exception:
        return None


def _set_keyring_password(password: str) -> bool:
    """Store the certificate password in the OS keyring. Returns True on success."""
    try:
        import keyring

        keyring.set_password(KEYRING_SERVICE, KEYRING_USERNAME, password)
        return True
    except Exception:
        return False


def _delete_keyring_password() -> bool:
    try:
        import keyring

        keyring.delete_password(KEYRING_SERVICE, KEYRING_USERNAME)
        return True
    except Exception:
        return False


# --- Certificate access ---


def get_cert_path() -> str:
    """Return the .pfx path from CERT_PFX_PATH. Raises KeyError if unset."""
    return os.environ["CERT_PFX_PATH"]


def get_cert_password() -> str:
    """Return the certificate password.

    Priority: 1) CERT_PFX_PASSWORD env var, 2) OS keyring.
    Raises KeyError if neither source has the password.
    """
    pwd = os.environ.get("CERT_PFX_PASSWORD")
    if pwd is not None:
        return pwd
    pwd = _get_keyring_password()
    if pwd is not None:
        return pwd
    raise KeyError("CERT_PFX_PASSWORD")


# --- YAML config ---


def load_yaml(path: Path) -> dict:
    """Load and parse a YAML file, returning the top-level dict."""
    return yaml.safe_load(path.read_text()) or {}


def load_issuer() -> dict:
    """Load issuer identity (tax id, legal name, point of sale) from credentials.yaml."""
    return load_yaml(get_config_dir() / "credentials.yaml")


# --- Runtime settings ---


def _env_decimal(name: str) -> Decimal | None:
    raw = os.environ.get(name)
    if not raw:
        return None
    return Decimal(raw)


def get_retry_interval() -> float | None:
    """Seconds between automatic outbox replays after a transient failure."""
    raw = os.environ.get("FACTURADOR_RETRY_INTERVAL", "300")
    value = float(raw)
    return value if value > 0 else None


def get_log_level() -> str:
    return os.environ.get("FACTURADOR_LOG_LEVEL", "WARNING").upper()


def load_policy() -> ElectronicInvoicePolicy:
    """Build the electronic-invoice policy from FACTURADOR_*_THRESHOLD env vars."""
    return ElectronicInvoicePolicy(
        electronic_threshold=_env_decimal("FACTURADOR_ELECTRONIC_THRESHOLD"),
        customer_details_threshold=_env_decimal("FACTURADOR_CUSTOMER_DETAILS_THRESHOLD"),
    )
