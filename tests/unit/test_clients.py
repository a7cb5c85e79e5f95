"""
Unit tests for the HTTP collaborator clients, using a recording session instead of the network.
"""

import json
import logging

import pytest
import requests

from mission_engine.clients import (
    CampaignGenerator, EmailProvider, EnrichmentClient, LeadSearchClient, ResearchClient,
)
from mission_engine.error_handler import ServiceError
from mission_engine.logging_config import JSONFormatter, TextFormatter, task_context


class FakeResponse:
    def __init__(self, status_code=200, body=None, text=None):
        self.status_code = status_code
        self._body = body
        self.text = text if text is not None else json.dumps(body)

    @property
    def ok(self):
        return 200 <= self.status_code < 300

    def json(self):
        if self._body is None:
            raise ValueError("No JSON object could be decoded")
        return self._body


class RecordingSession:
    def __init__(self, response=None, error=None):
        self.response = response or FakeResponse(body={})
        self.error = error
        self.calls = []

    def post(self, url, json=None, headers=None, timeout=None):
        self.calls.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        if self.error:
            raise self.error
        return self.response


def _client(cls, response=None, error=None, **kwargs):
    session = RecordingSession(response, error)
    return cls(url="http://svc.test/endpoint", session=session, **kwargs), session


class TestServiceClient:
    def test_headers_carry_user_and_secret(self):
        client, session = _client(LeadSearchClient, FakeResponse(body={"leads": []}),
                                  internal_secret="shh", timeout=7)
        client.search({"titles": ["CTO"]}, user_id="user_1")

        call = session.calls[0]
        assert call["url"] == "http://svc.test/endpoint"
        assert call["headers"]["x-user-id"] == "user_1"
        assert call["headers"]["x-internal-api-secret"] == "shh"
        assert call["timeout"] == 7

    def test_no_secret_header_when_unset(self):
        client, session = _client(LeadSearchClient, FakeResponse(body=[]), internal_secret="")
        client.search({})
        assert "x-internal-api-secret" not in session.calls[0]["headers"]
        assert "x-user-id" not in session.calls[0]["headers"]

    def test_non_2xx_raises_with_status(self):
        client, _ = _client(EmailProvider, FakeResponse(status_code=409, text="duplicate"))
        with pytest.raises(ServiceError) as exc:
            client.send("a@b.test", "Hi", "<p>x</p>")
        assert exc.value.status_code == 409
        assert "duplicate" in str(exc.value)

    def test_network_error_raises(self):
        client, _ = _client(LeadSearchClient, error=requests.ConnectionError("refused"))
        with pytest.raises(ServiceError) as exc:
            client.search({})
        assert exc.value.status_code is None
        assert "lead-search" in str(exc.value)

    def test_invalid_json_raises(self):
        client, _ = _client(LeadSearchClient, FakeResponse(body=None, text="<html>"))
        with pytest.raises(ServiceError):
            client.search({})


class TestLeadSearch:
    @pytest.mark.parametrize("body", [
        [{"id": "1"}],
        {"leads": [{"id": "1"}]},
        {"people": [{"id": "1"}]},
        {"data": {"leads": [{"id": "1"}]}},
    ])
    def test_result_shapes(self, body):
        client, _ = _client(LeadSearchClient, FakeResponse(body=body))
        assert client.search({}) == [{"id": "1"}]


class TestEnrichment:
    def test_body_and_result(self):
        client, session = _client(EnrichmentClient,
                                  FakeResponse(body={"enriched": [{"clientRef": "l1", "email": "a@b.test"}]}))
        records = client.enrich([{"id": "l1"}], reveal_phone=True)
        assert records == [{"clientRef": "l1", "email": "a@b.test"}]
        assert session.calls[0]["json"] == {"leads": [{"id": "l1"}], "revealEmail": True,
                                            "revealPhone": True}

    def test_missing_list_is_empty(self):
        client, _ = _client(EnrichmentClient, FakeResponse(body={"ok": True}))
        assert client.enrich([]) == []


class TestResearch:
    def test_unwraps_report(self):
        client, session = _client(ResearchClient,
                                  FakeResponse(body=[{"report": {"overview": "Growing"}}]))
        report = client.investigate({"id": "l1"}, {"name": "Acme"}, {"name": "Us"}, {})
        assert report == {"overview": "Growing"}
        assert session.calls[0]["json"]["companies"][0]["leadRef"] == "l1"

    def test_empty_report_raises(self):
        client, _ = _client(ResearchClient, FakeResponse(body={}))
        with pytest.raises(ServiceError):
            client.investigate({"id": "l1"}, {}, {}, {})


class TestEmailAndCampaign:
    def test_send_maps_provider_fields(self):
        client, _ = _client(EmailProvider, FakeResponse(body={"provider": "gmail", "messageId": "m1",
                                                              "threadId": "t1"}))
        assert client.send("a@b.test", "Hi", "<p>x</p>") == {
            "provider": "gmail", "message_id": "m1", "thread_id": "t1"}

    def test_campaign_steps_normalized(self):
        client, _ = _client(CampaignGenerator, FakeResponse(body={"steps": [
            {"name": "Intro", "offsetDays": 0, "subject": "Hi", "bodyHtml": "<p>a</p>"},
            "garbage",
        ]}))
        assert client.generate({}) == [
            {"name": "Intro", "offset_days": 0, "subject": "Hi", "body_html": "<p>a</p>"}]


def test_json_formatter_carries_task_context():
    record = logging.LogRecord("mission_engine.worker", logging.INFO, __file__, 1,
                               "Task %s done", ("t1",), None)
    record.task_id = "t1"
    record.duration_ms = 12
    entry = json.loads(JSONFormatter().format(record))
    assert entry["message"] == "Task t1 done"
    assert entry["task_id"] == "t1"
    assert entry["duration_ms"] == 12
    assert "mission_id" not in entry


def test_text_formatter_appends_task_context():
    record = logging.LogRecord("mission_engine.worker", logging.INFO, __file__, 1,
                               "Task done", (), None)
    for key, value in task_context({"id": "t1", "type": "SEARCH", "organization_id": "org_1"}).items():
        setattr(record, key, value)
    line = TextFormatter().format(record)
    assert line.endswith("Task done [task_id=t1 organization_id=org_1 task_type=SEARCH]")
