"""Application-level configuration: LLM credentials and upload settings."""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

SUPPORTED_PROVIDERS = {"deepseek", "openai", "gemini"}
_DEFAULT_PROVIDER = os.getenv("CHARTSTUDIO_DEFAULT_LLM_PROVIDER", "deepseek").lower()

# Environment variables consulted when the credentials file has no key.
_ENV_KEYS = {
    "deepseek": "DEEPSEEK_API_KEY",
    "openai": "OPENAI_API_KEY",
    "gemini": "GEMINI_API_KEY",
}

DEEPSEEK_BASE_URL = os.getenv("CHARTSTUDIO_DEEPSEEK_BASE_URL", "https://api.deepseek.com/v1")
ALLOWED_EXTENSIONS = (".csv", ".xlsx", ".xls")


class CredentialsError(RuntimeError):
    """Raised when required credentials are missing or invalid."""


_REPO_ROOT = Path(__file__).resolve().parents[2]
_DEFAULT_CREDENTIALS_PATH = _REPO_ROOT / "config" / "credentials.json"


def _resolve_credentials_path() -> Path:
    override = os.getenv("CHARTSTUDIO_CREDENTIALS_FILE")
    if override:
        return Path(override)
    return _DEFAULT_CREDENTIALS_PATH


def _load_credentials_raw() -> Dict[str, Any]:
    path = _resolve_credentials_path()
    if not path.exists():
        raise CredentialsError(f"credentials file not found: {path}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:  # pragma: no cover
        raise CredentialsError(f"invalid JSON in credentials file: {exc}") from exc
    if not isinstance(data, dict):
        raise CredentialsError("credentials file must contain a JSON object")
    return data


def _load_credentials_optional() -> Dict[str, Any]:
    try:
        return _load_credentials_raw()
    except CredentialsError:
        return {}


def _write_credentials(data: Dict[str, Any]) -> None:
    path = _resolve_credentials_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, ensure_ascii=False, indent=2) + "\n", encoding="utf-8")
    try:  # pragma: no cover - permissions may fail on some OS
        os.chmod(path, 0o600)
    except PermissionError:
        pass
    reset_cache()


def _llm_section() -> Dict[str, Any]:
    raw = _load_credentials_optional().get("llm")
    if not isinstance(raw, dict):
        return {}
    section = dict(raw)
    # Flat "<provider>_api_key" entries are folded into the nested layout.
    for provider in SUPPORTED_PROVIDERS:
        flat = f"{provider}_api_key"
        if flat in section and provider not in section:
            section[provider] = {"api_key": section.pop(flat)}
    return section


def _usable(key: Any) -> bool:
    return isinstance(key, str) and bool(key.strip()) and not key.strip().startswith("<")


def _file_key(section: Dict[str, Any], provider: str) -> Optional[str]:
    node = section.get(provider)
    if isinstance(node, dict):
        key = node.get("api_key")
        if isinstance(key, str):
            return key
    return None


def _env_key(provider: str) -> Optional[str]:
    name = _ENV_KEYS.get(provider)
    return os.getenv(name) if name else None


@lru_cache(maxsize=1)
def get_llm_provider() -> str:
    section = _llm_section()
    provider = str(section.get("provider") or "").lower()
    if provider in SUPPORTED_PROVIDERS:
        return provider
    if _DEFAULT_PROVIDER in SUPPORTED_PROVIDERS and is_provider_configured(_DEFAULT_PROVIDER):
        return _DEFAULT_PROVIDER
    for candidate in ("deepseek", "openai", "gemini"):
        if is_provider_configured(candidate):
            return candidate
    return _DEFAULT_PROVIDER if _DEFAULT_PROVIDER in SUPPORTED_PROVIDERS else "deepseek"


@lru_cache(maxsize=4)
def get_api_key(provider: str) -> str:
    provider = provider.lower()
    if provider not in SUPPORTED_PROVIDERS:
        raise CredentialsError(f"unsupported provider: {provider}")
    file_key = _file_key(_llm_section(), provider)
    env_key = _env_key(provider)
    if _usable(file_key):
        api_key = file_key
    elif _usable(env_key):
        api_key = env_key
    else:
        api_key = file_key or env_key
    if not isinstance(api_key, str) or not api_key.strip():
        raise CredentialsError(f"{provider} api key is not configured")
    if api_key.strip().startswith("<"):
        raise CredentialsError(f"{provider} api key still contains placeholder value")
    return api_key.strip()


def is_provider_configured(provider: str) -> bool:
    provider = provider.lower()
    if provider not in SUPPORTED_PROVIDERS:
        return False
    return _usable(_file_key(_llm_section(), provider)) or _usable(_env_key(provider))


def get_model_name(provider: str) -> str:
    if provider == "gemini":
        return os.getenv("CHARTSTUDIO_GEMINI_MODEL", "gemini-1.5-flash")
    if provider == "openai":
        return os.getenv("CHARTSTUDIO_LLM_MODEL", "gpt-4o-mini")
    return os.getenv("CHARTSTUDIO_DEEPSEEK_MODEL", "deepseek-chat")


def set_llm_credentials(provider: str, api_key: str, make_active: bool = True) -> None:
    provider = provider.lower()
    if provider not in SUPPORTED_PROVIDERS:
        raise CredentialsError(f"unsupported provider: {provider}")
    key = (api_key or "").strip()
    if not key:
        raise CredentialsError("api key cannot be empty")
    if key.startswith("<"):
        raise CredentialsError("api key still contains placeholder value")

    data = _load_credentials_optional()
    section = _llm_section()
    entry = section.get(provider)
    if not isinstance(entry, dict):
        entry = {}
    entry["api_key"] = key
    section[provider] = entry
    if make_active:
        section["provider"] = provider
    data["llm"] = section
    _write_credentials(data)


def set_active_provider(provider: str) -> None:
    provider = provider.lower()
    if provider not in SUPPORTED_PROVIDERS:
        raise CredentialsError(f"unsupported provider: {provider}")
    if not is_provider_configured(provider):
        raise CredentialsError(f"{provider} api key is not configured")
    data = _load_credentials_optional()
    section = _llm_section()
    section["provider"] = provider
    data["llm"] = section
    _write_credentials(data)


def get_upload_dir() -> Path:
    return Path(os.getenv("CHARTSTUDIO_UPLOAD_DIR", str(_REPO_ROOT / "data" / "uploads")))


def get_max_upload_bytes() -> int:
    raw = os.getenv("CHARTSTUDIO_MAX_UPLOAD_MB", "20")
    try:
        mb = float(raw)
    except ValueError:
        mb = 20.0
    return int(max(mb, 0.001) * 1024 * 1024)


def get_cors_origins() -> List[str]:
    raw = os.getenv("CHARTSTUDIO_CORS_ORIGINS", "http://localhost:5173")
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


def reset_cache() -> None:
    get_api_key.cache_clear()
    get_llm_provider.cache_clear()


__all__ = [
    "ALLOWED_EXTENSIONS",
    "CredentialsError",
    "DEEPSEEK_BASE_URL",
    "SUPPORTED_PROVIDERS",
    "get_api_key",
    "get_cors_origins",
    "get_llm_provider",
    "get_max_upload_bytes",
    "get_model_name",
    "get_upload_dir",
    "is_provider_configured",
    "reset_cache",
    "set_active_provider",
    "set_llm_credentials",
]
