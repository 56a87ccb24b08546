"""Operator view tests: summaries, record queries, exports and the admin key gate."""

from datetime import datetime

import pytest

from lms_telemetry.core.config import settings
from lms_telemetry.models import UserInteraction
from lms_telemetry.services.export import CSV_COLUMNS, NO_DATA

T0 = 1_700_000_000_000  # 2023-11-14 22:13:20 UTC
DAY_MS = 86_400_000


def ingest(client, *events, session="session-a", user=None, **extra):
    headers = {"x-authenticated-user-id": str(user)} if user is not None else {}
    body = {"sessionId": session, "sessionStartTime": T0, "events": list(events), **extra}
    response = client.post("/api/analytics/interactions", json=body, headers=headers)
    assert response.status_code == 200, response.text
    return response


def ev(type="click", page="/learn/42", action="click", ts=T0, **fields):
    return {"type": type, "page": page, "action": action, "timestamp": ts, **fields}


def get_data(client, path, **params):
    response = client.get(f"/api/analytics{path}", params=params)
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["success"] is True
    return body["data"]


@pytest.fixture
def populated(client_with_db, seeded):
    """Two sessions across both seeded courses."""
    ingest(
        client_with_db,
        ev(courseId=42, ts=T0),
        ev(courseId=42, ts=T0 + 1000, elementText="Statistics quiz"),
        ev(type="page_view", page="/dashboard", action="view", ts=T0 + 2000),
        user=3,
        deviceType="desktop",
        browserName="Firefox",
    )
    ingest(
        client_with_db,
        ev(page="/learn/43", courseId=43, ts=T0 + DAY_MS),
        ev(type="scroll", page="/learn/43", action="scroll_25", courseId=43, scrollDepth=25, ts=T0 + DAY_MS + 500),
        session="session-b",
        deviceType="mobile",
        browserName="Safari",
    )
    return client_with_db


class TestInteractionSummary:

    def test_totals_and_breakdowns(self, populated):
        data = get_data(populated, "/interactions/summary")
        assert data["source"] == "user_interaction_logs"
        assert data["totalInteractions"] == 5
        assert data["uniqueSessions"] == 2
        assert data["byType"][0] == {"type": "click", "count": 3}
        assert {"page": "/learn/43", "count": 2} in data["byPage"]
        assert data["byCourse"] == [
            {"courseId": 42, "courseTitle": "Intro to Data Science", "count": 2},
            {"courseId": 43, "courseTitle": "Applied Statistics", "count": 2},
        ]
        assert {"device": "desktop", "count": 3} in data["byDevice"]
        assert {"browser": "Safari", "count": 2} in data["byBrowser"]
        assert [r["eventAction"] for r in data["recentInteractions"]][:2] == ["scroll_25", "click"]

    def test_filters(self, populated):
        assert get_data(populated, "/interactions/summary", interactionType="page_view")["totalInteractions"] == 1
        assert get_data(populated, "/interactions/summary", page="dash")["totalInteractions"] == 1
        assert get_data(populated, "/interactions/summary", courseId=43)["totalInteractions"] == 2
        assert get_data(populated, "/interactions/summary", userId=3)["uniqueSessions"] == 1
        later = get_data(populated, "/interactions/summary", startDate="2023-11-15T00:00:00Z")
        assert later["totalInteractions"] == 2

    def test_legacy_table_until_enriched_rows_exist(self, client_with_db, seeded):
        seeded.add_all([
            UserInteraction(user_id=3, session_id="old-1", interaction_type="click", page="/learn/42",
                            action="click", additional_data='{"tab": "notes"}', timestamp=datetime(2023, 1, 1)),
            UserInteraction(user_id=3, session_id="old-1", interaction_type="page_view", page="/dashboard",
                            additional_data="not json", timestamp=datetime(2023, 1, 2)),
        ])
        seeded.commit()

        legacy = get_data(client_with_db, "/interactions/summary")
        assert legacy["source"] == "user_interactions"
        assert legacy["totalInteractions"] == 2
        assert legacy["byCourse"] == [] and legacy["byDevice"] == []
        assert [r["metadata"] for r in legacy["recentInteractions"]] == [None, {"tab": "notes"}]
        assert get_data(client_with_db, "/interactions/summary", courseId=42)["totalInteractions"] == 0

        ingest(client_with_db, ev())
        assert get_data(client_with_db, "/interactions/summary")["source"] == "user_interaction_logs"

    def test_empty_store(self, client_with_db, seeded):
        data = get_data(client_with_db, "/interactions/summary")
        assert data["totalInteractions"] == 0
        assert data["recentInteractions"] == []


class TestInteractionQuery:

    def test_search_matches_course_title(self, populated):
        data = get_data(populated, "/interactions/query", search="Statistics")
        titles = {(r["courseTitle"], r["elementText"]) for r in data["logs"]}
        # the course title matches two rows, the element text a third
        assert data["pagination"]["total"] == 3
        assert ("Intro to Data Science", "Statistics quiz") in titles
        assert all(r["courseTitle"] == "Applied Statistics" or r["elementText"] == "Statistics quiz" for r in data["logs"])

    def test_search_is_literal(self, populated):
        assert get_data(populated, "/interactions/query", search="%")["pagination"]["total"] == 0

    def test_unknown_sort_falls_back_to_newest_first(self, populated):
        data = get_data(populated, "/interactions/query", sortBy="password; DROP TABLE users")
        stamps = [r["timestampMs"] for r in data["logs"]]
        assert stamps == sorted(stamps, key=int, reverse=True)
        assert stamps[0] == str(T0 + DAY_MS + 500)

    def test_sort_ascending_by_event_type(self, populated):
        data = get_data(populated, "/interactions/query", sortBy="eventType", sortOrder="ASC")
        assert [r["eventType"] for r in data["logs"]] == ["click", "click", "click", "page_view", "scroll"]

    def test_pagination_and_clamping(self, populated):
        data = get_data(populated, "/interactions/query", page=2, limit=2)
        assert len(data["logs"]) == 2
        assert data["pagination"] == {"page": 2, "limit": 2, "total": 5, "totalPages": 3}

        clamped = get_data(populated, "/interactions/query", page=0, limit=500)
        assert clamped["pagination"]["page"] == 1
        assert clamped["pagination"]["limit"] == 100
        assert get_data(populated, "/interactions/query", limit=0)["pagination"]["limit"] == 50

    def test_filters_combine(self, populated):
        data = get_data(populated, "/interactions/query", eventType="click", pagePath="/learn/4", userId=3)
        assert data["pagination"]["total"] == 2

    def test_record_shape(self, populated):
        [record] = get_data(populated, "/interactions/query", eventType="scroll")["logs"]
        assert record["scrollDepth"] == 25
        assert record["courseTitle"] == "Applied Statistics"
        assert record["timestampMs"] == str(T0 + DAY_MS + 500)
        assert record["sessionId"] == "session-b"

    def test_filter_options(self, populated):
        data = get_data(populated, "/interactions/filter-options")
        assert data["users"] == [{"id": 3, "fullname": "Ada Lovelace", "email": "ada@example.edu"}]
        assert [c["title"] for c in data["courses"]] == ["Applied Statistics", "Intro to Data Science"]
        assert {"eventType": "scroll", "count": 1} in data["eventTypes"]
        assert data["pages"][0] == {"path": "/learn/42", "count": 2}


class TestTimeseries:

    def test_daily_buckets(self, populated):
        data = get_data(populated, "/interactions/timeseries")
        assert data["bucket"] == "day"
        assert data["points"] == [
            {"bucket": "2023-11-14", "count": 3, "uniqueSessions": 1},
            {"bucket": "2023-11-15", "count": 2, "uniqueSessions": 1},
        ]

    def test_hourly_buckets_with_filter(self, populated):
        data = get_data(populated, "/interactions/timeseries", bucket="hour", courseId=42)
        assert data["points"] == [{"bucket": "2023-11-14 22:00", "count": 2, "uniqueSessions": 1}]

    def test_unknown_bucket_rejected(self, populated):
        assert populated.get("/api/analytics/interactions/timeseries", params={"bucket": "week"}).status_code == 422


class TestCsvExport:

    def test_no_data(self, client_with_db, seeded):
        response = client_with_db.get("/api/analytics/interactions/export/csv")
        assert response.status_code == 200
        assert response.text == NO_DATA

    def test_header_and_rows(self, populated):
        response = populated.get("/api/analytics/interactions/export/csv")
        assert response.headers["content-type"].startswith("text/csv")
        assert "interaction-logs-" in response.headers["content-disposition"]
        lines = response.text.splitlines()
        assert lines[0] == ",".join(CSV_COLUMNS)
        assert len(lines) == 6
        newest = lines[1].split(",")
        assert newest[CSV_COLUMNS.index("eventAction")] == "scroll_25"
        assert newest[CSV_COLUMNS.index("timestamp")] == "2023-11-15T22:13:20.500Z"
        assert newest[CSV_COLUMNS.index("userId")] == ""

    def test_cells_with_delimiters_are_quoted(self, client_with_db, seeded):
        ingest(client_with_db, ev(elementText='Say "hi", then go'))
        body = client_with_db.get("/api/analytics/interactions/export/csv").text
        assert '"Say ""hi"", then go"' in body

    def test_export_search_uses_narrower_columns(self, populated):
        body = populated.get("/api/analytics/interactions/export/csv", params={"search": "Statistics"}).text
        # element text is searched by the record list but not by the export
        assert len(body.splitlines()) == 3
        assert "Statistics quiz" not in body

    def test_export_honours_filters(self, populated):
        body = populated.get("/api/analytics/interactions/export/csv", params={"eventType": "nothing"}).text
        assert body == NO_DATA


class TestJsonExports:

    def test_recent_interactions(self, populated):
        data = get_data(populated, "/export/interactions")
        assert len(data) == 5
        assert data[0]["eventAction"] == "scroll_25"

    def test_recent_chatbot_logs_empty(self, client_with_db, seeded):
        assert get_data(client_with_db, "/export/chatbot") == []


class TestChatbotViews:

    @pytest.fixture
    def conversation(self, client_with_db, seeded):
        base = {"sessionId": "session-c", "sessionStartTime": T0, "sectionId": 5}
        turns = [
            {**base, "eventType": "conversation_start", "timestamp": T0},
            {**base, "eventType": "message_sent", "messageContent": "what is a vector?", "timestamp": T0 + 1000},
            {**base, "eventType": "message_received", "responseContent": "A vector has magnitude and direction.",
             "responseTime": 850, "aiModel": "tutor-large", "timestamp": T0 + 2000},
        ]
        for turn in turns:
            response = client_with_db.post("/api/analytics/chatbot-interaction", json=turn, headers={"x-authenticated-user-id": "3"})
            assert response.status_code == 200
        return client_with_db

    def test_summary(self, conversation):
        data = get_data(conversation, "/chatbot/summary")
        assert data["totalLogs"] == 3
        assert data["byChatbot"] == [{"sectionId": 5, "chatbotTitle": "Linear Algebra Tutor", "count": 3}]
        assert data["byCourse"] == [{"courseId": 42, "courseTitle": "Intro to Data Science", "count": 3}]
        assert data["byUser"] == [{"userId": 3, "userName": "Ada Lovelace", "count": 3}]
        assert data["byAiModel"] == [{"model": "tutor-large", "count": 1}]
        assert data["responseTimeStats"] == {"avg": 850.0, "min": 850.0, "max": 850.0}
        assert data["messageLengthStats"]["avgWords"] == 4.0
        assert data["messageLengthStats"]["maxChars"] == 17.0
        assert data["responseLengthStats"]["avgChars"] == 37.0
        assert data["recentLogs"][0]["eventType"] == "message_received"

    def test_summary_section_filter(self, conversation):
        assert get_data(conversation, "/chatbot/summary", sectionId=6)["totalLogs"] == 0

    def test_section_drill_down(self, conversation):
        data = get_data(conversation, "/chatbot/section/5", limit=2)
        assert [log["eventType"] for log in data["logs"]] == ["message_received", "message_sent"]
        assert data["pagination"] == {"page": 1, "limit": 2, "total": 3, "totalPages": 2}

    def test_unknown_section_is_empty_page(self, conversation):
        data = get_data(conversation, "/chatbot/section/999")
        assert data == {"logs": [], "pagination": {"page": 1, "limit": 50, "total": 0, "totalPages": 0}}


class TestAdminKey:

    def test_open_when_unset(self, client_with_db, seeded):
        assert client_with_db.get("/api/analytics/interactions/summary").status_code == 200

    def test_missing_key(self, client_with_db, seeded, monkeypatch):
        monkeypatch.setattr(settings, "admin_api_key", "s3cret")
        assert client_with_db.get("/api/analytics/interactions/summary").status_code == 401

    def test_wrong_key(self, client_with_db, seeded, monkeypatch):
        monkeypatch.setattr(settings, "admin_api_key", "s3cret")
        response = client_with_db.get("/api/analytics/interactions/summary", headers={"x-admin-api-key": "guess"})
        assert response.status_code == 403

    def test_header_or_query_key(self, client_with_db, seeded, monkeypatch):
        monkeypatch.setattr(settings, "admin_api_key", "s3cret")
        headers = {"x-admin-api-key": "s3cret"}
        assert client_with_db.get("/api/analytics/chatbot/summary", headers=headers).status_code == 200
        assert client_with_db.get("/api/analytics/export/chatbot", params={"api_key": "s3cret"}).status_code == 200
        bearer = {"Authorization": "Bearer s3cret"}
        assert client_with_db.get("/api/analytics/interactions/filter-options", headers=bearer).status_code == 200

    def test_ingest_never_gated(self, client_with_db, seeded, monkeypatch):
        monkeypatch.setattr(settings, "admin_api_key", "s3cret")
        ingest(client_with_db, ev())


class TestVersion:

    def test_version_payload(self, client_with_db):
        response = client_with_db.get("/api/version")
        assert response.status_code == 200
        body = response.json()
        assert body["version"] == settings.version
        assert body["schema_management"] == "create_all"
        assert "db_alembic_head" in body
