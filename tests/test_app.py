"""
Tests for the CLI helpers and the FastAPI endpoints (review disabled).
"""
import argparse
import hashlib
import inspect
import json
import sys

import pytest
from fastapi.testclient import TestClient

from app import api, cli

from conftest import SCENARIO_A_ROWS


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(api, "_committee", None)
    monkeypatch.setattr(api, "_committee_error", "review disabled for tests")
    return TestClient(api.app)


class TestApi:
    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "ok"
        assert body["review_enabled"] is False
        assert body["review_error"] == "review disabled for tests"
        assert body["reviewers"] == []

    def test_create_case(self, client, scenario_a_bytes):
        response = client.post(
            "/cases",
            files={"file": ("order.xlsx", scenario_a_bytes)},
            data={"case_id": "api-1"},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["order_id"] == "api-1:r1"
        assert body["routing"]["action"] == "auto_proceed"
        assert body["order"]["meta"]["source_filename"] == "order.xlsx"
        assert body["order"]["line_items"][0]["quantity"] == 10

    def test_default_case_id_is_digest_prefix(self, client, scenario_a_bytes):
        body = client.post("/cases", files={"file": ("order.xlsx", scenario_a_bytes)}).json()
        assert body["order_id"] == hashlib.sha256(scenario_a_bytes).hexdigest()[:16] + ":r1"

    def test_bad_workbook_is_reported_in_body(self, client):
        response = client.post("/cases", files={"file": ("order.xlsx", b"not a workbook")})
        assert response.status_code == 200
        body = response.json()
        assert [i["code"] for i in body["order"]["issues"]] == ["INVALID_WORKBOOK"]
        assert body["routing"]["action"] == "human_correction"

    def test_empty_upload(self, client):
        response = client.post("/cases", files={"file": ("order.xlsx", b"")})
        assert response.status_code == 400

    def test_case_handler_runs_in_threadpool(self):
        assert not inspect.iscoroutinefunction(api.create_case)


class TestCli:
    def test_parse_resolutions(self):
        assert cli.parse_resolutions(["customer=resolved", " sku:A-1 = ambiguous "]) == {
            "customer": "resolved",
            "sku:A-1": "ambiguous",
        }
        assert cli.parse_resolutions(None) == {}
        with pytest.raises(argparse.ArgumentTypeError):
            cli.parse_resolutions(["customer"])

    def test_collect_source_paths(self, tmp_path):
        (tmp_path / "a.xlsx").write_bytes(b"x")
        (tmp_path / "sub").mkdir()
        (tmp_path / "sub" / "b.XLSM").write_bytes(b"x")
        (tmp_path / "notes.txt").write_text("x")
        found = cli.collect_source_paths([str(tmp_path), str(tmp_path / "missing.xlsx")])
        assert [p.name for p in found] == ["a.xlsx", "b.XLSM"]

    def test_main_writes_results(self, tmp_path, monkeypatch, make_workbook):
        inputs = tmp_path / "in"
        inputs.mkdir()
        (inputs / "good.xlsx").write_bytes(make_workbook(SCENARIO_A_ROWS))
        (inputs / "bad.xlsx").write_bytes(b"broken")
        out = tmp_path / "out"
        monkeypatch.setattr(sys, "argv", [
            "cli.py", "--inputs", str(inputs), "--output-dir", str(out), "--no-review",
        ])
        assert cli.main() == 2
        good = json.loads((out / "good.json").read_text(encoding="utf-8"))
        bad = json.loads((out / "bad.json").read_text(encoding="utf-8"))
        assert good["routing"]["action"] == "auto_proceed"
        assert bad["routing"]["reasons"] == ["blocker: INVALID_WORKBOOK"]

    def test_main_without_inputs(self, tmp_path, monkeypatch):
        monkeypatch.setattr(sys, "argv", ["cli.py", "--inputs", str(tmp_path / "nothing")])
        assert cli.main() == 1
