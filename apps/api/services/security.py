from __future__ import annotations

import re

_BEARER = re.compile(r"(?i)\bBearer\s+([A-Za-z0-9._\-]+)\b")
_PROVIDER_KEY = re.compile(r"\b(sk|gm|AIza)[-_A-Za-z0-9]{8,}\b")
_API_KEY_FIELD = re.compile(r"(?i)(api[_-]?key|token|secret)\s*[:=]\s*([\"']?)([^\"'\s]{6,})(\2)")
_URL_KEY_PARAM = re.compile(r"(?i)([?&](?:key|api[_-]?key|token)\=)([^&#]{4,})")


def redact(text: str, *, max_len: int = 500) -> str:
    """Mask credentials in error text before it reaches logs or responses.

    - Bearer tokens: Bearer ***
    - provider keys (sk-..., AIza...) -> ***
    - api_key/token/secret fields and URL query params -> masked
    """
    if not text:
        return ""
    s = str(text)
    s = _BEARER.sub("Bearer ***", s)
    s = _API_KEY_FIELD.sub(lambda m: f"{m.group(1)}={m.group(2)}***{m.group(4)}", s)
    s = _URL_KEY_PARAM.sub(lambda m: f"{m.group(1)}***", s)
    s = _PROVIDER_KEY.sub("***", s)
    if max_len and len(s) > max_len:
        s = s[: max_len - 3] + "..."
    return s
