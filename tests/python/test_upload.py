import io

import pandas as pd
import pytest
from fastapi.testclient import TestClient

from apps.api.main import app
from apps.api.services import gateway, metrics


@pytest.fixture(autouse=True)
def isolated_upload(tmp_path, monkeypatch):
    monkeypatch.setenv("CHARTSTUDIO_UPLOAD_DIR", str(tmp_path / "uploads"))
    monkeypatch.delenv("CHARTSTUDIO_MAX_UPLOAD_MB", raising=False)
    monkeypatch.setattr(metrics, "persist_event", lambda payload: None)
    monkeypatch.setattr(
        gateway,
        "clean_records",
        lambda records: (
            {"cleaned_data": list(records), "processing_notes": "kept", "data_quality": "ok"},
            {"provider": "deepseek", "llm_error": None, "fallback_applied": False},
        ),
    )
    monkeypatch.setattr(
        gateway,
        "recommend_charts",
        lambda records: (
            {"recommendations": [{"chart_type": "line", "reason": "trend", "suitable": True}], "data_insights": "rising"},
            {"provider": "deepseek", "llm_error": None, "fallback_applied": False},
        ),
    )
    return tmp_path / "uploads"


def test_upload_csv_success(isolated_upload):
    client = TestClient(app)
    csv_content = "month,sales,cost\nJan,100,80\nFeb,120,\n"
    resp = client.post("/api/upload", files={"file": ("sales.csv", csv_content, "text/csv")})

    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["success"] is True
    assert body["data"] == [
        {"month": "Jan", "sales": 100, "cost": 80.0},
        {"month": "Feb", "sales": 120, "cost": None},
    ]
    assert body["recommendations"][0]["chart_type"] == "line"
    assert body["data_insights"] == "rising"
    assert body["processing_notes"] == "kept"
    assert body["data_quality"] == "ok"
    # temporary upload removed after decoding
    assert list(isolated_upload.iterdir()) == []


def test_upload_xlsx_success():
    buf = io.BytesIO()
    pd.DataFrame({"stage": ["visit", "cart"], "users": [1000, 300]}).to_excel(buf, index=False, engine="openpyxl")
    client = TestClient(app)
    files = {"file": ("funnel.XLSX", buf.getvalue(), "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet")}
    resp = client.post("/api/upload", files=files)
    assert resp.status_code == 200, resp.text
    assert resp.json()["data"] == [{"stage": "visit", "users": 1000}, {"stage": "cart", "users": 300}]


def test_upload_rejects_unsupported_type():
    client = TestClient(app)
    resp = client.post("/api/upload", files={"file": ("notes.txt", "hello", "text/plain")})
    assert resp.status_code == 400
    assert "unsupported file type" in resp.json()["detail"]


def test_upload_requires_file():
    client = TestClient(app)
    resp = client.post("/api/upload")
    assert resp.status_code == 400
    assert resp.json()["detail"] == "no file uploaded"


def test_upload_rejects_header_only_csv():
    client = TestClient(app)
    resp = client.post("/api/upload", files={"file": ("empty.csv", "a,b\n", "text/csv")})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "file is empty"


def test_upload_reports_decode_failure():
    client = TestClient(app)
    resp = client.post("/api/upload", files={"file": ("blank.csv", "", "text/csv")})
    assert resp.status_code == 400
    assert resp.json()["detail"].startswith("file processing failed")


def test_upload_too_large(monkeypatch, isolated_upload):
    monkeypatch.setenv("CHARTSTUDIO_MAX_UPLOAD_MB", "0.001")
    client = TestClient(app)
    content = "a,b\n" + "1,2\n" * 2000
    resp = client.post("/api/upload", files={"file": ("big.csv", content, "text/csv")})
    assert resp.status_code == 413
    assert list(isolated_upload.iterdir()) == []


def test_upload_records_metrics(monkeypatch):
    recorded = {}

    def fake_record(event_name, **properties):
        recorded[event_name] = properties

    monkeypatch.setattr(metrics, "record_event", fake_record)
    client = TestClient(app)
    resp = client.post("/api/upload", files={"file": ("s.csv", "x,y\n1,2\n", "text/csv")})
    assert resp.status_code == 200
    event = recorded["DatasetUploaded"]
    assert event["rows"] == 1 and event["cols"] == 2
    assert event["fallback_applied"] is False
    assert "duration_ms" in event
