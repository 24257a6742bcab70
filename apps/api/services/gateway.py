"""LLM-backed data cleaning and chart recommendation with deterministic fallback.

Both entry points send the full record set to the configured provider and
parse a JSON object out of the reply. When no key is configured, the SDK call
fails or the reply cannot be parsed, the caller still gets a usable result:
the original records for cleaning and a fixed recommendation set for charts.
"""

from __future__ import annotations

import json
import logging
import re
import time
from typing import Any, Dict, List, Optional, Sequence, Tuple

import google.generativeai as genai
from openai import OpenAI

from apps.api import config

from .charts import supported_chart_types
from .security import redact

LOGGER = logging.getLogger(__name__)

GatewayResult = Tuple[Dict[str, Any], Dict[str, Any]]

_FENCE = re.compile(r"```(?:json)?\s*\n?")

FALLBACK_INSIGHTS = "Data parsed successfully; choose a chart type that matches the data to visualise it."

_FALLBACK_REASONS: Dict[str, str] = {
    "line": "Shows trends clearly, following how values change over time or another continuous variable.",
    "bar": "Compares values across categories, making differences between items easy to read.",
    "pie": "Highlights proportions, showing how each part contributes to the whole.",
    "scatter": "Shows the relationship between two variables and helps spot correlation.",
    "radar": "Compares several dimensions at once across multiple records.",
    "heatmap": "Shows the density of two-dimensional data and makes hot spots visible.",
    "funnel": "Shows stage-by-stage conversion through a process.",
    "gauge": "Shows progress of a single indicator against its target.",
}


def fallback_recommendations() -> Dict[str, Any]:
    return {
        "recommendations": [
            {"chart_type": kind, "reason": _FALLBACK_REASONS[kind], "suitable": True}
            for kind in supported_chart_types()
            if kind in _FALLBACK_REASONS
        ],
        "data_insights": FALLBACK_INSIGHTS,
    }


# ---------------------------------------------------------------------------
# Cleaning
# ---------------------------------------------------------------------------


def clean_records(records: Sequence[Dict[str, Any]]) -> GatewayResult:
    """Ask the LLM to clean ``records``; pass them through unchanged on any failure."""

    original = list(records)
    provider = config.get_llm_provider()
    if not config.is_provider_configured(provider):
        payload = {
            "cleaned_data": original,
            "processing_notes": f"{provider} API key is not configured; using the original data",
            "data_quality": "Data quality not assessed",
        }
        return payload, _evaluation(provider, None, None, fallback_applied=True)

    t0 = time.perf_counter()
    try:
        text = _invoke_llm(_build_clean_prompt(original), provider=provider, max_tokens=1500)
        obj = parse_llm_json(text)
        cleaned = obj.get("cleaned_data", obj.get("cleanedData"))
        if not _is_record_list(cleaned):
            raise RuntimeError("LLM response has no usable cleaned data")
        payload = {
            "cleaned_data": cleaned,
            "processing_notes": str(obj.get("processing_notes") or obj.get("processingNotes") or ""),
            "data_quality": str(obj.get("data_quality") or obj.get("dataQuality") or ""),
        }
        latency = int((time.perf_counter() - t0) * 1000)
        return payload, _evaluation(provider, latency, None, fallback_applied=False)
    except Exception as exc:
        LOGGER.warning("LLM data cleaning failed; using original data", exc_info=True)
        payload = {
            "cleaned_data": original,
            "processing_notes": "An error occurred while cleaning the data; using the original data",
            "data_quality": "Data quality not assessed",
        }
        latency = int((time.perf_counter() - t0) * 1000)
        return payload, _evaluation(provider, latency, redact(str(exc)), fallback_applied=True)


# ---------------------------------------------------------------------------
# Recommendation
# ---------------------------------------------------------------------------


def recommend_charts(records: Sequence[Dict[str, Any]]) -> GatewayResult:
    """Return chart recommendations for ``records``, falling back to the fixed set."""

    provider = config.get_llm_provider()
    if not config.is_provider_configured(provider):
        return fallback_recommendations(), _evaluation(
            provider, None, f"{provider} api key is not configured", fallback_applied=True
        )

    t0 = time.perf_counter()
    try:
        text = _invoke_llm(_build_recommend_prompt(list(records)), provider=provider, max_tokens=1000)
        obj = parse_llm_json(text)
        recs = normalize_recommendations(obj.get("recommendations"))
        if not recs:
            raise RuntimeError("LLM returned no supported chart recommendations")
        insights = obj.get("data_insights") or obj.get("dataInsights") or ""
        latency = int((time.perf_counter() - t0) * 1000)
        payload = {"recommendations": recs, "data_insights": str(insights)}
        return payload, _evaluation(provider, latency, None, fallback_applied=False)
    except Exception as exc:
        LOGGER.warning("LLM chart recommendation failed; using default recommendations", exc_info=True)
        latency = int((time.perf_counter() - t0) * 1000)
        return fallback_recommendations(), _evaluation(provider, latency, redact(str(exc)), fallback_applied=True)


def normalize_recommendations(raw: Any) -> List[Dict[str, Any]]:
    if isinstance(raw, dict):
        raw = [raw]
    if not isinstance(raw, list):
        return []
    supported = set(supported_chart_types())
    seen = set()
    out: List[Dict[str, Any]] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        kind = str(item.get("chart_type") or item.get("chartType") or "").strip().lower()
        if kind not in supported or kind in seen:
            continue
        seen.add(kind)
        suitable = item.get("suitable", True)
        out.append({
            "chart_type": kind,
            "reason": str(item.get("reason") or _FALLBACK_REASONS.get(kind, "")),
            "suitable": suitable if isinstance(suitable, bool) else True,
        })
    return out


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def parse_llm_json(text: Optional[str]) -> Dict[str, Any]:
    """Extract a JSON object from an LLM reply, tolerating code fences and prose."""
    if not text or not text.strip():
        raise RuntimeError("empty response from LLM")
    content = _FENCE.sub("", text) if "```" in text else text
    try:
        obj = json.loads(content)
    except json.JSONDecodeError:
        m = re.search(r"\{.*\}", content, re.DOTALL)
        if not m:
            raise RuntimeError("invalid JSON from LLM: could not locate JSON object")
        try:
            obj = json.loads(m.group(0))
        except json.JSONDecodeError as exc:
            raise RuntimeError(f"invalid JSON from LLM: {exc}") from exc
    if not isinstance(obj, dict):
        raise RuntimeError("invalid JSON from LLM: expected an object")
    return obj


def _is_record_list(value: Any) -> bool:
    return isinstance(value, list) and bool(value) and all(isinstance(row, dict) for row in value)


def _columns(records: List[Dict[str, Any]]) -> List[str]:
    return [str(c) for c in records[0].keys()] if records else []


def _data_block(records: List[Dict[str, Any]]) -> str:
    columns = _columns(records)
    return (
        f"Full data ({len(records)} rows):\n"
        f"{json.dumps(records, ensure_ascii=False, indent=2, default=str)}\n\n"
        f"- Rows: {len(records)}\n"
        f"- Columns: {len(columns)}\n"
        f"- Column names: {', '.join(columns) if columns else 'none'}\n"
    )


def _build_clean_prompt(records: List[Dict[str, Any]]) -> str:
    return (
        "Clean the following data: handle missing values, outliers and formatting problems.\n\n"
        + _data_block(records)
        + "\nReturn the complete cleaned data and notes on what was done, as JSON:\n"
        + "{\n"
        + f'  "cleaned_data": [all {len(records)} cleaned rows, same column names],\n'
        + '  "processing_notes": "what was changed",\n'
        + '  "data_quality": "assessment of data quality"\n'
        + "}"
    )


def _build_recommend_prompt(records: List[Dict[str, Any]]) -> str:
    columns = _columns(records)
    first = records[0].get(columns[0]) if records and columns else None
    last = records[-1].get(columns[0]) if records and columns else None
    choices = "\n".join(f"- {kind}: {_FALLBACK_REASONS.get(kind, '')}" for kind in supported_chart_types())
    return (
        "As a data visualisation expert, analyse the data below and recommend the most suitable interactive chart types.\n\n"
        + _data_block(records)
        + f"- Range: from {first} to {last}\n\n"
        + "Choose the 3-5 best fitting chart types from:\n"
        + choices
        + "\n\nExplain each recommendation. Respond with JSON only:\n"
        + "{\n"
        + '  "recommendations": [{"chart_type": "one of the types above", "reason": "why it fits", "suitable": true}],\n'
        + '  "data_insights": "observations about the data: characteristics, trends, anomalies"\n'
        + "}"
    )


def _invoke_llm(prompt: str, *, provider: str, max_tokens: int, temperature: float = 0.7) -> Optional[str]:
    try:
        api_key = config.get_api_key(provider)
    except config.CredentialsError as exc:
        raise RuntimeError(str(exc))
    model_name = config.get_model_name(provider)

    if provider == "gemini":
        genai.configure(api_key=api_key)
        generation_config = {
            "temperature": temperature,
            "max_output_tokens": max_tokens,
            "response_mime_type": "application/json",
        }
        model = genai.GenerativeModel(model_name)
        response = model.generate_content(prompt, generation_config=generation_config)
        return _extract_gemini_text(response)

    if provider == "openai":
        client = OpenAI(api_key=api_key)
        response = client.responses.create(
            model=model_name,
            input=[{"role": "user", "content": prompt}],
            temperature=temperature,
            max_output_tokens=max_tokens,
        )
        return _extract_text(response)

    client = OpenAI(api_key=api_key, base_url=config.DEEPSEEK_BASE_URL)
    response = client.chat.completions.create(
        model=model_name,
        messages=[{"role": "user", "content": prompt}],
        max_tokens=max_tokens,
        temperature=temperature,
    )
    return _extract_chat_text(response)


def _extract_chat_text(response: Any) -> Optional[str]:
    choices = getattr(response, "choices", None) or []
    if not choices:
        return None
    message = getattr(choices[0], "message", None)
    return getattr(message, "content", None)


def _extract_text(response: Any) -> Optional[str]:  # pragma: no cover - depends on SDK version
    text = getattr(response, "output_text", None)
    if isinstance(text, str) and text.strip():
        return text
    for chunk in getattr(response, "output", None) or []:
        for item in getattr(chunk, "content", []) or []:
            if getattr(item, "type", None) == "output_text":
                return item.text
    return None


def _extract_gemini_text(response: Any) -> Optional[str]:  # pragma: no cover - SDK-dependent
    try:
        txt = response.text
    except ValueError:
        # blocked or multi-candidate responses have no quick accessor
        txt = None
    if isinstance(txt, str) and txt.strip():
        return txt
    buf: List[str] = []
    for cand in getattr(response, "candidates", None) or []:
        content = getattr(cand, "content", None)
        for part in getattr(content, "parts", None) or []:
            t = getattr(part, "text", None)
            if isinstance(t, str):
                buf.append(t)
    joined = "\n".join(buf).strip()
    return joined or None


def _evaluation(
    provider: str,
    latency_ms: Optional[int],
    llm_error: Optional[str],
    *,
    fallback_applied: bool,
) -> Dict[str, Any]:
    return {
        "provider": provider,
        "llm_latency_ms": latency_ms,
        "llm_error": llm_error,
        "fallback_applied": fallback_applied,
    }
