"""Reporting content and the moderation queue."""

import pytest

from database import create_document


@pytest.fixture
def reporter(make_user):
    return make_user()


@pytest.fixture
def offender(make_user):
    return make_user(bio="spam spam spam")


@pytest.fixture
def moderator(make_user):
    return make_user(role="moderator")


def report_user(client, auth_header, reporter, offender, reason="spam"):
    return client.post(
        "/api/reports/",
        json={"target": {"type": "user", "id": str(offender["_id"])}, "reason": reason, "description": "Posts ads"},
        headers=auth_header(reporter),
    )


def test_create_report(client, auth_header, reporter, offender):
    resp = report_user(client, auth_header, reporter, offender)

    assert resp.status_code == 201
    body = resp.json()
    assert body["status"] == "pending"
    assert body["target_type"] == "user"
    assert body["target"]["type"] == "user"
    assert body["target"]["content"]["username"] == offender["username"]
    assert body["reporter"]["username"] == reporter["username"]
    assert body["reviewer"] is None


def test_duplicate_report_rejected(client, db, auth_header, reporter, offender, make_user):
    assert report_user(client, auth_header, reporter, offender).status_code == 201
    resp = report_user(client, auth_header, reporter, offender, reason="harassment")
    assert resp.status_code == 400

    # another user may still report the same target
    assert report_user(client, auth_header, make_user(), offender).status_code == 201
    assert db.report.count_documents({}) == 2


def test_report_review_and_news_targets(client, db, auth_header, reporter, offender):
    review = create_document(db, "review", {"anime_id": "x", "user_id": str(offender["_id"]), "rating": 1, "body": "bad"})
    news = create_document(db, "news", {"title": "Fake", "content": "Not true", "author_id": str(offender["_id"])})
    headers = auth_header(reporter)

    resp = client.post(
        "/api/reports/",
        json={"target": {"type": "review", "id": str(review["_id"])}, "reason": "inappropriate-content"},
        headers=headers,
    )
    assert resp.status_code == 201
    assert resp.json()["target"]["content"]["body"] == "bad"

    resp = client.post(
        "/api/reports/",
        json={"target": {"type": "news", "id": str(news["_id"])}, "reason": "fake-information"},
        headers=headers,
    )
    assert resp.status_code == 201
    assert resp.json()["target"]["collection"] == "news"


def test_report_payload_validation(client, auth_header, reporter, offender):
    headers = auth_header(reporter)
    target_id = str(offender["_id"])

    bad_type = {"target": {"type": "movie", "id": target_id}, "reason": "spam"}
    assert client.post("/api/reports/", json=bad_type, headers=headers).status_code == 422
    bad_reason = {"target": {"type": "user", "id": target_id}, "reason": "boring"}
    assert client.post("/api/reports/", json=bad_reason, headers=headers).status_code == 422
    too_long = {"target": {"type": "user", "id": target_id}, "reason": "spam", "description": "x" * 1001}
    assert client.post("/api/reports/", json=too_long, headers=headers).status_code == 422

    missing = {"target": {"type": "user", "id": "64b7f0c2a1b2c3d4e5f60718"}, "reason": "spam"}
    assert client.post("/api/reports/", json=missing, headers=headers).status_code == 404
    assert client.post("/api/reports/", json=missing).status_code == 401


def test_queue_is_staff_only(client, auth_header, reporter, offender, moderator):
    report_user(client, auth_header, reporter, offender)

    assert client.get("/api/reports/", headers=auth_header(reporter)).status_code == 403
    body = client.get("/api/reports/", headers=auth_header(moderator)).json()
    assert body["total"] == 1
    assert body["reports"][0]["target"]["content"]["username"] == offender["username"]

    assert client.get("/api/reports/", params={"status": "resolved"}, headers=auth_header(moderator)).json()["total"] == 0
    assert client.get("/api/reports/", params={"target_type": "news"}, headers=auth_header(moderator)).json()["total"] == 0
    assert client.get("/api/reports/", params={"sort_by": "bogus"}, headers=auth_header(moderator)).status_code == 422


def test_detail_includes_reporter_email(client, auth_header, reporter, offender, moderator):
    report = report_user(client, auth_header, reporter, offender).json()

    detail = client.get(f"/api/reports/{report['id']}", headers=auth_header(moderator)).json()
    assert detail["reporter"]["email"] == reporter["email"]
    assert client.get("/api/reports/64b7f0c2a1b2c3d4e5f60718", headers=auth_header(moderator)).status_code == 404


def test_status_update_stamps_reviewer(client, db, auth_header, reporter, offender, moderator):
    report = report_user(client, auth_header, reporter, offender).json()
    url = f"/api/reports/{report['id']}"

    resp = client.put(url, json={"status": "resolved", "action_taken": "warning", "resolution": "Warned"}, headers=auth_header(moderator))
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "resolved"
    assert body["action_taken"] == "warning"
    assert body["reviewer"]["username"] == moderator["username"]
    assert db.report.find_one({})["reviewed_at"] is not None

    assert client.put(url, json={"action_taken": "nuke"}, headers=auth_header(moderator)).status_code == 422


def test_stats_overview(client, db, auth_header, reporter, offender, moderator, make_user):
    report_user(client, auth_header, reporter, offender)
    report_user(client, auth_header, make_user(), offender, reason="harassment")
    db.report.update_one({"reason": "spam"}, {"$set": {"status": "dismissed"}})

    stats = client.get("/api/reports/stats/overview", headers=auth_header(moderator)).json()

    assert stats["total"] == 2
    assert stats["pending"] == 1
    assert {s["_id"]: s["count"] for s in stats["status_breakdown"]} == {"pending": 1, "dismissed": 1}
    assert {s["_id"]: s["count"] for s in stats["reason_breakdown"]} == {"spam": 1, "harassment": 1}
    assert stats["type_breakdown"] == [{"_id": "user", "count": 2}]


def test_delete_is_admin_only(client, auth_header, reporter, offender, moderator, make_user):
    report = report_user(client, auth_header, reporter, offender).json()
    url = f"/api/reports/{report['id']}"

    assert client.delete(url, headers=auth_header(moderator)).status_code == 403
    admin = make_user(role="admin")
    assert client.delete(url, headers=auth_header(admin)).status_code == 200
    assert client.delete(url, headers=auth_header(admin)).status_code == 404


def test_report_response_hides_target_email(client, auth_header, reporter, make_user):
    target = make_user(email="private.person@mail.com")
    body = report_user(client, auth_header, reporter, target).json()

    assert "email" not in body["target"]["content"]
    assert "private.person@mail.com" not in str(body)
