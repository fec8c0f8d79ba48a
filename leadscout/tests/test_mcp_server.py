"""Tests for the MCP tools, called directly against an in-memory database."""
from __future__ import annotations

import json
from unittest.mock import patch

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from leadscout import mcp_server
from leadscout.models import Base

PROFILE = {"metadata": {"analyzed_at": "2024-06-01T12:00:00Z", "source": "website"}}
COMPANY_PROFILE = {
    **PROFILE,
    "company": {"name": "Acme", "website": "https://acme.io", "location": "Berlin", "email": "hello@acme.io"},
}


@pytest.fixture()
def session_factory(tmp_path, monkeypatch):
    monkeypatch.setenv("LEADSCOUT_DB_PATH", str(tmp_path / "unused.db"))
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    with patch("leadscout.mcp_server.get_session", TestSession):
        yield TestSession


class TestAnalysisTools:
    def test_analyze_then_poll(self, session_factory):
        queued = mcp_server.analyze_lead(website="acme.io", user_id="u1")
        assert queued["status"] == "pending"

        status = mcp_server.get_job_status(queued["job_id"])
        assert status["status"] == "PENDING"
        assert status["stage"] == "Queued"
        assert status["result"] is None

    def test_analyze_without_subject(self, session_factory):
        result = mcp_server.analyze_lead()
        assert result == {"error": "Invalid subject: Either github or website must be provided"}

    def test_analyze_bad_repository(self, session_factory):
        assert mcp_server.analyze_lead(github="not a repo")["error"].startswith("Invalid subject:")

    def test_unknown_job(self, session_factory):
        assert mcp_server.get_job_status("missing") == {"error": "Job missing not found"}

    def test_unknown_lead(self, session_factory):
        assert mcp_server.get_lead(42) == {"error": "Lead 42 not found"}


class TestScoringTools:
    def test_score_profile(self):
        scoring = mcp_server.score_profile(PROFILE)
        assert scoring["total_score"] == 7.5
        assert scoring["grade"] == "D"

    def test_score_profile_invalid(self):
        result = mcp_server.score_profile({"metadata": {"source": "fax"}})
        assert result["error"].startswith("Invalid profile:")

    def test_categorize_leads(self):
        buckets = mcp_server.categorize_leads([PROFILE, COMPANY_PROFILE])
        assert buckets["hot"] == []
        assert [p["scoring"]["total_score"] for p in buckets["cold"]] == [7.5, 17.5]

    def test_prioritize_leads(self):
        ranked = mcp_server.prioritize_leads([PROFILE, COMPANY_PROFILE])
        assert [p["scoring"]["total_score"] for p in ranked] == [17.5, 7.5]
        assert len(mcp_server.prioritize_leads([PROFILE, COMPANY_PROFILE], min_score=10)) == 1

    def test_prioritize_leads_invalid(self):
        assert "error" in mcp_server.prioritize_leads([{"company": {}}])


class TestOverview:
    def test_overview_lists_weights(self):
        overview = json.loads(mcp_server.leadscout_overview())
        assert overview["scoring"]["weights"]["github"] == 0.25
        assert set(overview["stages"]) == {"repository", "technology", "contact", "company"}
