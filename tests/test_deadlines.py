from datetime import datetime, timedelta, timezone


def _due_in(**kwargs):
    return (datetime.now(timezone.utc) + timedelta(**kwargs)).isoformat()


def _create(client, auth, subject_id, title="Report", **due):
    resp = client.post(
        "/api/deadlines",
        json={"subject_id": subject_id, "title": title, "type": "Assignment", "due_date": _due_in(**due)},
        headers=auth,
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_priority_is_derived_on_create(client, auth, subject):
    sid = subject["id"]
    assert _create(client, auth, sid, days=2)["priority"] == "urgent"
    assert _create(client, auth, sid, days=-1)["priority"] == "overdue"
    assert _create(client, auth, sid, days=5)["priority"] == "soon"
    assert _create(client, auth, sid, days=10)["priority"] == "later"


def test_priority_cannot_be_set_by_caller(client, auth, subject):
    resp = client.post(
        "/api/deadlines",
        json={"subject_id": subject["id"], "title": "X", "type": "Quiz", "due_date": _due_in(days=10), "priority": "urgent"},
        headers=auth,
    )
    assert resp.status_code == 400


def test_create_for_foreign_subject(client, subject, other_auth):
    resp = client.post(
        "/api/deadlines",
        json={"subject_id": subject["id"], "title": "X", "type": "Quiz", "due_date": _due_in(days=1)},
        headers=other_auth,
    )
    assert resp.status_code == 404


def test_update_recomputes_priority(client, auth, subject):
    deadline = _create(client, auth, subject["id"], days=10)

    resp = client.put(f"/api/deadlines/{deadline['id']}", json={"due_date": _due_in(days=1)}, headers=auth)
    assert resp.status_code == 200
    assert resp.json()["priority"] == "urgent"


def test_completion_toggle_freezes_and_recomputes(client, auth, subject):
    deadline = _create(client, auth, subject["id"], days=2)

    done = client.patch(f"/api/deadlines/{deadline['id']}/complete", headers=auth).json()
    assert done["completed"] is True
    assert done["completed_date"] is not None
    assert done["priority"] == "urgent"

    # Completed deadlines keep their priority even when the due date moves
    moved = client.put(f"/api/deadlines/{deadline['id']}", json={"due_date": _due_in(days=20)}, headers=auth).json()
    assert moved["priority"] == "urgent"

    reopened = client.patch(f"/api/deadlines/{deadline['id']}/complete", headers=auth).json()
    assert reopened["completed"] is False
    assert reopened["completed_date"] is None
    assert reopened["priority"] == "later"


def test_list_filters_and_subject_info(client, auth, subject, other_auth):
    sid = subject["id"]
    late = _create(client, auth, sid, title="Late", days=20)
    soon = _create(client, auth, sid, title="Soon", days=1)
    client.patch(f"/api/deadlines/{soon['id']}/complete", headers=auth)

    listed = client.get("/api/deadlines", headers=auth).json()
    assert [d["title"] for d in listed] == ["Soon", "Late"]
    assert listed[0]["subject"]["name"] == "Algorithms"
    assert listed[0]["subject"]["color"] == "#3B82F6"

    pending = client.get("/api/deadlines", params={"completed": "false"}, headers=auth).json()
    assert [d["id"] for d in pending] == [late["id"]]

    later = client.get("/api/deadlines", params={"priority": "later"}, headers=auth).json()
    assert [d["id"] for d in later] == [late["id"]]

    assert client.get("/api/deadlines", headers=other_auth).json() == []
    resp = client.get("/api/deadlines", params={"subject_id": sid}, headers=other_auth)
    assert resp.status_code == 403


def test_urgent_deadlines(client, auth, subject):
    sid = subject["id"]
    overdue = _create(client, auth, sid, title="Overdue", days=-2)
    urgent = _create(client, auth, sid, title="Urgent", days=1)
    _create(client, auth, sid, title="Later", days=30)
    done = _create(client, auth, sid, title="Done", days=1)
    client.patch(f"/api/deadlines/{done['id']}/complete", headers=auth)

    listed = client.get("/api/deadlines/urgent", headers=auth).json()
    assert [d["id"] for d in listed] == [overdue["id"], urgent["id"]]


def test_move_deadline_to_foreign_subject(client, auth, subject, other_auth):
    deadline = _create(client, auth, subject["id"], days=3)
    theirs = client.post("/api/subjects", json={"name": "Theirs"}, headers=other_auth).json()

    resp = client.put(f"/api/deadlines/{deadline['id']}", json={"subject_id": theirs["id"]}, headers=auth)
    assert resp.status_code == 404


def test_delete_deadline(client, auth, subject, other_auth):
    deadline = _create(client, auth, subject["id"], days=3)
    assert client.delete(f"/api/deadlines/{deadline['id']}", headers=other_auth).status_code == 403
    assert client.delete(f"/api/deadlines/{deadline['id']}", headers=auth).status_code == 200
    assert client.get("/api/deadlines", headers=auth).json() == []
