import json as _json
import logging
import os as _os
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from fastapi import FastAPI, File, HTTPException, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field

from . import config as app_config
from .services import charts as chartsvc
from .services import gateway
from .services import metrics
from .services import storage
from .services.security import redact

LOGGER = logging.getLogger("apps.api.events")

ProviderName = Literal["deepseek", "openai", "gemini"]


class Recommendation(BaseModel):
    chart_type: str
    reason: str
    suitable: bool = True


class UploadResponse(BaseModel):
    success: bool = True
    data: List[Dict[str, Any]]
    recommendations: List[Recommendation]
    data_insights: str
    processing_notes: str
    data_quality: str


class GenerateChartRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    data: Optional[List[Dict[str, Any]]] = None
    chart_type: Optional[str] = Field(default=None, alias="chartType")
    title: Optional[str] = None


class GenerateChartResponse(BaseModel):
    success: bool = True
    option: Dict[str, Any]


class ChartTypesResponse(BaseModel):
    chart_types: List[str]
    default: str


class ProviderState(BaseModel):
    configured: bool


class CredentialStatus(BaseModel):
    provider: ProviderName
    configured: bool
    providers: Dict[str, ProviderState]


class CredentialUpdateRequest(BaseModel):
    provider: ProviderName = "deepseek"
    api_key: Optional[str] = Field(default=None)


class ProviderUpdateRequest(BaseModel):
    provider: ProviderName


def log_event(event_name: str, properties: dict) -> None:
    payload = {
        "event_name": event_name,
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        **properties,
    }
    metrics.record_event(event_name, **properties)
    metrics.persist_event(payload)
    LOGGER.info(_json.dumps(payload, ensure_ascii=False, default=str))


app = FastAPI(title="Chart Studio API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=app_config.get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/api/metrics/slo")
def metrics_slo() -> Dict[str, Any]:
    """In-memory latency/fallback snapshot with threshold evaluation."""
    thresholds = {
        "DatasetUploaded": {"p95": 30_000, "fallback_rate": 0.5},
        "ChartOptionGenerated": {"p95": 200},
    }
    raw = _os.getenv("CHARTSTUDIO_SLO_THRESHOLDS")
    if raw:
        try:
            env_cfg = _json.loads(raw)
        except ValueError:
            env_cfg = None
        if isinstance(env_cfg, dict):
            thresholds.update(env_cfg)
    return {
        "snapshot": metrics.slo_snapshot(),
        "evaluation": metrics.detect_violations(thresholds),
        "thresholds": thresholds,
    }


@app.post("/api/upload", response_model=UploadResponse)
def upload(file: Optional[UploadFile] = File(default=None)) -> UploadResponse:
    if file is None or not file.filename:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="no file uploaded")
    t0 = time.perf_counter()
    try:
        records = storage.load_upload(file)
    except storage.DatasetDecodeError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"file processing failed: {e}")
    except ValueError as e:
        msg = str(e)
        code = status.HTTP_413_REQUEST_ENTITY_TOO_LARGE if "too large" in msg else status.HTTP_400_BAD_REQUEST
        raise HTTPException(status_code=code, detail=msg)

    cleaned, clean_eval = gateway.clean_records(records)
    recommended, rec_eval = gateway.recommend_charts(cleaned["cleaned_data"])

    dur = int((time.perf_counter() - t0) * 1000)
    log_event(
        "DatasetUploaded",
        {
            "filename": file.filename,
            "rows": len(records),
            "cols": len(records[0]),
            "provider": rec_eval.get("provider"),
            "clean_error": clean_eval.get("llm_error"),
            "recommend_error": rec_eval.get("llm_error"),
            "fallback_applied": bool(clean_eval.get("fallback_applied") or rec_eval.get("fallback_applied")),
            "duration_ms": dur,
        },
    )
    return UploadResponse(
        data=cleaned["cleaned_data"],
        recommendations=[Recommendation(**r) for r in recommended["recommendations"]],
        data_insights=recommended["data_insights"],
        processing_notes=cleaned["processing_notes"],
        data_quality=cleaned["data_quality"],
    )


@app.post("/api/generate-chart", response_model=GenerateChartResponse)
def generate_chart(req: GenerateChartRequest) -> GenerateChartResponse:
    if not req.data or not (req.chart_type or "").strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="missing required parameters")
    t0 = time.perf_counter()
    try:
        option = chartsvc.build_chart_option(req.data, req.chart_type, req.title)
    except chartsvc.EmptyRecordSetError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    dur = int((time.perf_counter() - t0) * 1000)
    log_event(
        "ChartOptionGenerated",
        {"chart_type": req.chart_type, "rows": len(req.data), "duration_ms": dur},
    )
    return GenerateChartResponse(option=option)


@app.get("/api/chart-types", response_model=ChartTypesResponse)
def chart_types() -> ChartTypesResponse:
    return ChartTypesResponse(chart_types=chartsvc.supported_chart_types(), default=chartsvc.DEFAULT_CHART_TYPE)


@app.get("/api/credentials/llm", response_model=CredentialStatus)
def credentials_llm_status() -> CredentialStatus:
    provider = app_config.get_llm_provider()
    provider_states = {
        name: ProviderState(configured=app_config.is_provider_configured(name))
        for name in sorted(app_config.SUPPORTED_PROVIDERS)
    }
    configured = provider_states.get(provider, ProviderState(configured=False)).configured
    return CredentialStatus(provider=provider, configured=configured, providers=provider_states)


@app.post("/api/credentials/llm", status_code=status.HTTP_204_NO_CONTENT)
def credentials_llm_update(req: CredentialUpdateRequest) -> None:
    key = (req.api_key or "").strip()
    if not key:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="api_key is required")
    if len(key) < 8:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="api_key must be at least 8 characters")
    try:
        app_config.set_llm_credentials(req.provider, key)
    except app_config.CredentialsError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=redact(str(exc)))
    log_event("LLMCredentialsUpdated", {"provider": req.provider, "configured": True})


@app.post("/api/credentials/llm/provider", status_code=status.HTTP_204_NO_CONTENT)
def credentials_llm_set_active(req: ProviderUpdateRequest) -> None:
    try:
        app_config.set_active_provider(req.provider)
    except app_config.CredentialsError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    log_event("LLMProviderSwitched", {"provider": req.provider})
