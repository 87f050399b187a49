from bson import ObjectId


def test_create_and_list_subjects(client, auth):
    resp = client.post("/api/subjects", json={"name": "Physics", "instructor": "Dr. Rao"}, headers=auth)
    assert resp.status_code == 201
    subject = resp.json()
    assert subject["color"] == "#3B82F6"
    assert subject["created_at"]

    listed = client.get("/api/subjects", headers=auth).json()
    assert [s["id"] for s in listed] == [subject["id"]]


def test_subjects_are_scoped_to_owner(client, subject, other_auth):
    assert client.get("/api/subjects", headers=other_auth).json() == []

    resp = client.get(f"/api/subjects/{subject['id']}", headers=other_auth)
    assert resp.status_code == 403

    resp = client.put(f"/api/subjects/{subject['id']}", json={"name": "Mine now"}, headers=other_auth)
    assert resp.status_code == 403


def test_missing_subject(client, auth):
    assert client.get(f"/api/subjects/{ObjectId()}", headers=auth).status_code == 404
    assert client.get("/api/subjects/not-an-id", headers=auth).status_code == 404


def test_update_subject_partial(client, auth, subject):
    resp = client.put(f"/api/subjects/{subject['id']}", json={"color": "#FF0000"}, headers=auth)
    assert resp.status_code == 200
    body = resp.json()
    assert body["color"] == "#FF0000"
    assert body["name"] == "Algorithms"
    assert body["credits"] == 4


def test_unknown_fields_are_rejected(client, auth, subject):
    resp = client.post("/api/subjects", json={"name": "Chem", "user_id": "someone"}, headers=auth)
    assert resp.status_code == 400

    resp = client.put(f"/api/subjects/{subject['id']}", json={"owner": "x"}, headers=auth)
    assert resp.status_code == 400


def test_invalid_subject_values(client, auth, subject):
    resp = client.put(f"/api/subjects/{subject['id']}", json={"credits": -1}, headers=auth)
    assert resp.status_code == 400
    resp = client.put(f"/api/subjects/{subject['id']}", json={"name": ""}, headers=auth)
    assert resp.status_code == 400


def test_delete_subject_cascades(client, auth, subject, store):
    sid = subject["id"]
    topic = client.post(f"/api/subjects/{sid}/topics", json={"name": "Graphs"}, headers=auth).json()
    client.post(f"/api/subjects/{sid}/resources", json={"title": "PYQ 2023", "type": "PYQ", "topic_id": topic["id"]}, headers=auth)
    client.post(f"/api/subjects/{sid}/attendance", json={"date": "2026-01-05T09:00:00Z", "status": "present"}, headers=auth)
    client.post(f"/api/subjects/{sid}/grading", json={"components": [{"name": "Exam", "weightage": 100}]}, headers=auth)
    client.post(f"/api/subjects/{sid}/scores", json={"component_name": "Exam", "obtained": 50, "max": 100}, headers=auth)
    client.post("/api/deadlines", json={"subject_id": sid, "title": "HW1", "type": "Assignment", "due_date": "2030-01-01T00:00:00Z"}, headers=auth)
    client.post("/api/study-sessions", json={"subject_id": sid, "duration": 30}, headers=auth)

    resp = client.delete(f"/api/subjects/{sid}", headers=auth)
    assert resp.status_code == 200
    assert resp.json()["removed"]["topic"] == 1

    assert client.get(f"/api/subjects/{sid}", headers=auth).status_code == 404
    for collection in ["topic", "resource", "attendance", "gradingcomponent", "score", "deadline", "studysession"]:
        assert store.count_documents(collection, {"subject_id": sid}) == 0


def test_other_user_cannot_delete_subject(client, subject, other_auth, auth):
    assert client.delete(f"/api/subjects/{subject['id']}", headers=other_auth).status_code == 403
    assert client.get(f"/api/subjects/{subject['id']}", headers=auth).status_code == 200
