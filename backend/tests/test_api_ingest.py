"""Ingest endpoint tests: enrichment, identity, client facts and all-or-nothing writes."""

from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from lms_telemetry.models import ChatbotInteractionLog, UserInteractionLog

T0 = 1_700_000_000_000


def batch(*events, **extra):
    return {"sessionId": "1700000000000-abc123xyz", "sessionStartTime": T0 - 60_000, "events": list(events), **extra}


def click(**fields):
    return {"type": "click", "page": "/learn/42", "action": "click", "timestamp": T0, **fields}


def stored_rows(db):
    return db.execute(select(UserInteractionLog).order_by(UserInteractionLog.id)).scalars().all()


class TestInteractionIngest:

    def test_course_title_resolved_at_write_time(self, client_with_db, seeded):
        response = client_with_db.post("/api/analytics/interactions", json=batch(click(courseId=42)))
        assert response.status_code == 200
        assert response.json() == {"success": True, "data": {"stored": 1}}

        [row] = stored_rows(seeded)
        assert row.course_id == 42
        assert row.course_title == "Intro to Data Science"
        assert row.timestamp_ms == T0
        assert row.timestamp == datetime(2023, 11, 14, 22, 13, 20)
        assert row.session_start_time == datetime(2023, 11, 14, 22, 12, 20)

    def test_event_sequence_is_array_position(self, client_with_db, seeded):
        events = [click(action="first"), click(action="second"), click(action="third")]
        client_with_db.post("/api/analytics/interactions", json=batch(*events))
        rows = stored_rows(seeded)
        assert [(r.event_action, r.event_sequence) for r in rows] == [("first", 0), ("second", 1), ("third", 2)]

    def test_lookups_once_per_batch(self, client_with_lookup, seeded, counting_lookup):
        events = [click(lectureId=11) for _ in range(10)]
        response = client_with_lookup.post("/api/analytics/interactions", json=batch(*events))
        assert response.json()["data"]["stored"] == 10
        assert counting_lookup.calls["lectures"] == 1
        assert counting_lookup.calls["modules"] == 1
        assert {r.module_title for r in stored_rows(seeded)} == {"Foundations"}

    def test_anonymous_and_identified_callers(self, client_with_db, seeded):
        client_with_db.post("/api/analytics/interactions", json=batch(click(action="anon")))
        client_with_db.post(
            "/api/analytics/interactions",
            json=batch(click(action="known")),
            headers={"x-authenticated-user-id": "3"},
        )
        anon, known = stored_rows(seeded)
        assert (anon.user_id, anon.user_fullname, anon.user_email) == (None, None, None)
        assert (known.user_id, known.user_fullname, known.user_email) == (3, "Ada Lovelace", "ada@example.edu")

    def test_unparseable_identity_header_is_anonymous(self, client_with_db, seeded):
        response = client_with_db.post(
            "/api/analytics/interactions", json=batch(click()), headers={"x-authenticated-user-id": "not-a-user"}
        )
        assert response.status_code == 200
        assert stored_rows(seeded)[0].user_id is None

    def test_client_facts_and_forwarded_ip(self, client_with_db, seeded):
        body = batch(
            click(),
            userAgent="Mozilla/5.0 (X11; Linux x86_64; rv:121.0) Gecko/20100101 Firefox/121.0",
            browserName="Firefox",
            deviceType="desktop",
            screenWidth=1920,
            timezone="Europe/London",
            testMode="student",
        )
        client_with_db.post("/api/analytics/interactions", json=body, headers={"x-forwarded-for": "203.0.113.9, 10.0.0.1"})
        [row] = stored_rows(seeded)
        assert row.ip_address == "203.0.113.9"
        assert (row.browser_name, row.device_type, row.screen_width) == ("Firefox", "desktop", 1920)
        assert row.timezone == "Europe/London"
        assert row.test_mode == "student"

    def test_socket_peer_without_forwarding(self, client_with_db, seeded):
        client_with_db.post("/api/analytics/interactions", json=batch(click()))
        assert stored_rows(seeded)[0].ip_address == "testclient"

    def test_missing_timestamp_uses_receipt_time(self, client_with_db, seeded):
        event = click()
        del event["timestamp"]
        client_with_db.post("/api/analytics/interactions", json=batch(event))
        [row] = stored_rows(seeded)
        assert row.timestamp_ms > T0

    def test_metadata_null_strings_dropped(self, client_with_db, seeded):
        client_with_db.post(
            "/api/analytics/interactions",
            json=batch(click(metadata={"dataTrack": "cta", "ariaLabel": "null"})),
        )
        assert stored_rows(seeded)[0].event_metadata == {"dataTrack": "cta"}

    def test_empty_batch_accepted(self, client_with_db, seeded):
        response = client_with_db.post("/api/analytics/interactions", json=batch())
        assert response.json()["data"]["stored"] == 0

    def test_invalid_body_rejected(self, client_with_db, seeded):
        assert client_with_db.post("/api/analytics/interactions", json={"events": []}).status_code == 422
        bad_type = batch(click(type="telepathy"))
        assert client_with_db.post("/api/analytics/interactions", json=bad_type).status_code == 422
        too_much = batch(click(metadata={f"k{i}": i for i in range(40)}))
        response = client_with_db.post("/api/analytics/interactions", json=too_much)
        assert response.status_code == 422
        assert stored_rows(seeded) == []

    def test_failed_write_stores_nothing(self, client_with_db, seeded, monkeypatch):
        def broken_execute(*args, **kwargs):
            raise OperationalError("INSERT INTO user_interaction_logs", {}, Exception("database is locked"))

        monkeypatch.setattr(seeded, "execute", broken_execute)
        response = client_with_db.post("/api/analytics/interactions", json=batch(click(), click(), click()))
        assert response.status_code == 500
        assert response.json() == {"detail": "Failed to store interactions"}

        monkeypatch.undo()
        assert seeded.execute(select(func.count()).select_from(UserInteractionLog)).scalar_one() == 0


class TestChatbotIngest:

    def turn(self, **fields):
        return {
            "sessionId": "1700000000000-abc123xyz",
            "sessionStartTime": T0 - 90_000,
            "sectionId": 5,
            "eventType": "message_sent",
            "eventSequence": 1,
            "timestamp": T0,
            **fields,
        }

    def test_full_hierarchy_from_section(self, client_with_db, seeded):
        response = client_with_db.post(
            "/api/analytics/chatbot-interaction",
            json=self.turn(messageContent="what is a vector?"),
            headers={"x-authenticated-user-id": "3"},
        )
        assert response.status_code == 200
        record_id = response.json()["data"]["id"]

        log = seeded.get(ChatbotInteractionLog, record_id)
        assert (log.course_id, log.course_title, log.course_slug) == (42, "Intro to Data Science", "intro-data-science")
        assert (log.module_id, log.module_title) == (7, "Foundations")
        assert (log.lecture_id, log.lecture_title) == (11, "Vectors and Matrices")
        assert log.section_order_index == 3
        assert log.chatbot_title == "Linear Algebra Tutor"
        assert log.chatbot_system_prompt == "You are a patient tutor."
        assert (log.message_char_count, log.message_word_count) == (17, 4)
        assert (log.response_char_count, log.response_word_count) == (0, 0)
        assert log.session_duration == 90
        assert log.user_fullname == "Ada Lovelace"

    def test_section_title_when_no_chatbot_title(self, client_with_db, seeded):
        response = client_with_db.post("/api/analytics/chatbot-interaction", json=self.turn(sectionId=6))
        log = seeded.get(ChatbotInteractionLog, response.json()["data"]["id"])
        assert log.chatbot_title == "Practice Chat"

    def test_live_params_recorded(self, client_with_db, seeded):
        body = self.turn(
            eventType="message_received",
            responseContent="A vector has magnitude and direction.",
            responseTime=850,
            aiModel="tutor-large",
            chatbotParams={"title": "Renamed Tutor"},
        )
        response = client_with_db.post("/api/analytics/chatbot-interaction", json=body)
        log = seeded.get(ChatbotInteractionLog, response.json()["data"]["id"])
        assert log.chatbot_title == "Renamed Tutor"
        assert log.chatbot_intro == "Ask me about vectors."
        assert log.response_word_count == 6
        assert (log.response_time, log.ai_model) == (850, "tutor-large")

    def test_unknown_section_still_stored(self, client_with_db, seeded):
        response = client_with_db.post("/api/analytics/chatbot-interaction", json=self.turn(sectionId=999))
        assert response.status_code == 200
        log = seeded.get(ChatbotInteractionLog, response.json()["data"]["id"])
        assert log.section_id == 999
        assert log.course_id is None
        assert log.chatbot_title is None

    def test_error_turn(self, client_with_db, seeded):
        body = self.turn(eventType="error", errorMessage="upstream timeout", errorCode="ETIMEDOUT")
        response = client_with_db.post("/api/analytics/chatbot-interaction", json=body)
        log = seeded.get(ChatbotInteractionLog, response.json()["data"]["id"])
        assert (log.event_type, log.error_code) == ("error", "ETIMEDOUT")

    def test_invalid_event_type_rejected(self, client_with_db, seeded):
        response = client_with_db.post("/api/analytics/chatbot-interaction", json=self.turn(eventType="typing"))
        assert response.status_code == 422
