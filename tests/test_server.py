"""
Tests for board_server.py endpoints.

Covers:
    - auth: register, login, bearer handling
    - sticky notes: CRUD, reorder, patch rejection
    - tasks: CRUD, move via PUT, column reorder
    - calendar CRUD
    - ownership isolation between two users
    - error body shape
"""


def make_notes(api, headers, *texts):
    ids = []
    for text in texts:
        r = api.post("/api/sticky-notes", json={"text": text}, headers=headers)
        assert r.status_code == 201
        ids.append(r.get_json()["id"])
    return ids


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Auth
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestAuth:

    def test_register_and_login(self, api, register):
        register("alice", password="hunter22")
        r = api.post("/api/auth/login", json={"email": "alice@example.com", "password": "hunter22"})
        assert r.status_code == 200
        body = r.get_json()
        assert body["token"]
        assert body["user"]["username"] == "alice"
        assert "password_hash" not in body["user"]

    def test_login_wrong_password(self, api, register):
        register("alice", password="hunter22")
        r = api.post("/api/auth/login", json={"email": "alice@example.com", "password": "nope"})
        assert r.status_code == 401
        assert r.get_json() == {"message": "Invalid credentials"}

    def test_register_duplicate(self, api, register):
        register("alice")
        r = api.post("/api/auth/register", json={
            "username": "alice", "email": "alice@example.com", "password": "hunter22",
        })
        assert r.status_code == 400
        assert r.get_json()["message"] == "User already exists"

    def test_register_validation(self, api):
        r = api.post("/api/auth/register", json={
            "username": "al", "email": "not-an-email", "password": "123",
        })
        assert r.status_code == 400
        assert "message" in r.get_json()

    def test_missing_token(self, api):
        r = api.get("/api/sticky-notes")
        assert r.status_code == 401
        assert r.get_json()["message"] == "Not authorized, no token"

    def test_bad_token(self, api):
        r = api.get("/api/tasks", headers={"Authorization": "Bearer garbage"})
        assert r.status_code == 401
        assert r.get_json()["message"] == "Not authorized, token failed"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Sticky notes
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestStickyNotes:

    def test_create_assigns_order(self, api, register):
        headers = register()
        r = api.post("/api/sticky-notes", json={}, headers=headers)
        assert r.status_code == 201
        note = r.get_json()
        assert note["order"] == 0
        assert note["text"] == ""
        assert note["color"] == "yellow"

    def test_reorder(self, api, register):
        headers = register()
        a, b, c = make_notes(api, headers, "A", "B", "C")
        r = api.put("/api/sticky-notes/reorder", json={"orderedIds": [c, a, b]}, headers=headers)
        assert r.status_code == 200
        assert [(n["text"], n["order"]) for n in r.get_json()] == [("C", 0), ("A", 1), ("B", 2)]

        listed = api.get("/api/sticky-notes", headers=headers).get_json()
        assert [n["text"] for n in listed] == ["C", "A", "B"]

    def test_reorder_non_array(self, api, register):
        headers = register()
        make_notes(api, headers, "A", "B")
        r = api.put("/api/sticky-notes/reorder", json={"orderedIds": "not-an-array"}, headers=headers)
        assert r.status_code == 400
        assert r.get_json() == {"message": "orderedIds must be an array"}
        listed = api.get("/api/sticky-notes", headers=headers).get_json()
        assert [n["text"] for n in listed] == ["A", "B"]

    def test_update_rejects_order(self, api, register):
        headers = register()
        a, b = make_notes(api, headers, "A", "B")
        r = api.put(f"/api/sticky-notes/{a}", json={"text": "x", "order": 7}, headers=headers)
        assert r.status_code == 400
        listed = api.get("/api/sticky-notes", headers=headers).get_json()
        assert [(n["text"], n["order"]) for n in listed] == [("A", 0), ("B", 1)]

    def test_update_content(self, api, register):
        headers = register()
        (a,) = make_notes(api, headers, "A")
        r = api.put(f"/api/sticky-notes/{a}", json={"color": "blue"}, headers=headers)
        assert r.status_code == 200
        assert r.get_json()["color"] == "blue"
        assert r.get_json()["text"] == "A"

        r = api.put(f"/api/sticky-notes/{a}", json={"color": "orange"}, headers=headers)
        assert r.status_code == 400

    def test_update_rejects_null(self, api, register):
        headers = register()
        (a,) = make_notes(api, headers, "A")
        r = api.put(f"/api/sticky-notes/{a}", json={"text": None}, headers=headers)
        assert r.status_code == 400
        assert r.get_json() == {"message": "Field text cannot be null"}
        listed = api.get("/api/sticky-notes", headers=headers).get_json()
        assert listed[0]["text"] == "A"

    def test_delete(self, api, register):
        headers = register()
        a, b = make_notes(api, headers, "A", "B")
        r = api.delete(f"/api/sticky-notes/{a}", headers=headers)
        assert r.status_code == 200
        assert r.get_json()["message"] == "Sticky note successfully deleted"
        r = api.delete(f"/api/sticky-notes/{a}", headers=headers)
        assert r.status_code == 404


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Tasks
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestTasks:

    def test_create_requires_title(self, api, register):
        headers = register()
        r = api.post("/api/tasks", json={"description": "no title"}, headers=headers)
        assert r.status_code == 400

    def test_create_defaults(self, api, register):
        headers = register()
        r = api.post("/api/tasks", json={"title": "Write docs"}, headers=headers)
        assert r.status_code == 201
        task = r.get_json()
        assert task["status"] == "active"
        assert task["priority"] == "medium"
        assert task["order"] == 0

    def test_legacy_progress_status(self, api, register):
        headers = register()
        r = api.post("/api/tasks", json={"title": "x", "status": "progress"}, headers=headers)
        assert r.get_json()["status"] == "in-progress"

    def test_move_via_put(self, api, register):
        headers = register()
        t1 = api.post("/api/tasks", json={"title": "T1"}, headers=headers).get_json()
        t2 = api.post("/api/tasks", json={"title": "T2", "status": "in-progress"},
                      headers=headers).get_json()

        r = api.put(f"/api/tasks/{t1['id']}", json={"status": "in-progress", "position": 0},
                    headers=headers)
        assert r.status_code == 200
        assert r.get_json()["status"] == "in-progress"
        assert r.get_json()["order"] == 0

        column = api.get("/api/tasks?status=in-progress", headers=headers).get_json()
        assert [(t["title"], t["order"]) for t in column] == [("T1", 0), ("T2", 1)]
        assert api.get("/api/tasks?status=active", headers=headers).get_json() == []
        assert api.get(f"/api/tasks/{t2['id']}", headers=headers).get_json()["order"] == 1

    def test_content_put_keeps_position(self, api, register):
        headers = register()
        t = api.post("/api/tasks", json={"title": "T"}, headers=headers).get_json()
        r = api.put(f"/api/tasks/{t['id']}", json={"description": "more"}, headers=headers)
        assert r.get_json()["description"] == "more"
        assert r.get_json()["status"] == "active"

    def test_put_rejects_order_field(self, api, register):
        headers = register()
        t = api.post("/api/tasks", json={"title": "T"}, headers=headers).get_json()
        r = api.put(f"/api/tasks/{t['id']}", json={"order": 3}, headers=headers)
        assert r.status_code == 400

    def test_reorder_column(self, api, register):
        headers = register()
        a = api.post("/api/tasks", json={"title": "A"}, headers=headers).get_json()["id"]
        b = api.post("/api/tasks", json={"title": "B"}, headers=headers).get_json()["id"]
        r = api.put("/api/tasks/reorder", json={"status": "active", "orderedIds": [b, a]},
                    headers=headers)
        assert r.status_code == 200
        assert [t["title"] for t in r.get_json()] == ["B", "A"]

        r = api.put("/api/tasks/reorder", json={"orderedIds": [a]}, headers=headers)
        assert r.status_code == 400

    def test_invalid_status(self, api, register):
        headers = register()
        r = api.get("/api/tasks?status=blocked", headers=headers)
        assert r.status_code == 400

    def test_stats(self, api, register):
        headers = register()
        api.post("/api/tasks", json={"title": "A"}, headers=headers)
        api.post("/api/tasks", json={"title": "B", "status": "completed"}, headers=headers)
        stats = api.get("/api/stats", headers=headers).get_json()
        assert stats["total"] == 2
        assert stats["by_status"] == {"active": 1, "in-progress": 0, "completed": 1}
        assert stats["completion"] == 0.5


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Calendar
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestCalendar:

    def test_crud(self, api, register):
        headers = register()
        r = api.post("/api/calendar-tasks",
                     json={"title": "Dentist", "date": "2026-11-02", "time": "09:30"},
                     headers=headers)
        assert r.status_code == 201
        entry = r.get_json()
        assert entry["completed"] is False

        r = api.put(f"/api/calendar-tasks/{entry['id']}", json={"completed": True}, headers=headers)
        assert r.get_json()["completed"] is True

        r = api.delete(f"/api/calendar-tasks/{entry['id']}", headers=headers)
        assert r.status_code == 200
        assert api.get("/api/calendar-tasks", headers=headers).get_json() == []

    def test_requires_fields(self, api, register):
        headers = register()
        r = api.post("/api/calendar-tasks", json={"title": "x", "date": "2026-11-02"},
                     headers=headers)
        assert r.status_code == 400
        r = api.post("/api/calendar-tasks",
                     json={"title": "x", "date": "tomorrow", "time": "09:30"}, headers=headers)
        assert r.status_code == 400


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Ownership isolation
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestIsolation:

    def test_other_users_items_untouchable(self, api, register):
        alice = register("alice")
        bob = register("bob")
        (bob_note,) = make_notes(api, bob, "bob's note")
        bob_task = api.post("/api/tasks", json={"title": "bob's task"}, headers=bob).get_json()

        assert api.get("/api/sticky-notes", headers=alice).get_json() == []
        assert api.put(f"/api/sticky-notes/{bob_note}", json={"text": "x"},
                       headers=alice).status_code == 401
        assert api.delete(f"/api/sticky-notes/{bob_note}", headers=alice).status_code == 401
        r = api.get(f"/api/tasks/{bob_task['id']}", headers=alice)
        assert r.status_code == 401
        assert r.get_json() == {"message": "Not authorized"}
        assert api.put(f"/api/tasks/{bob_task['id']}", json={"status": "completed"},
                       headers=alice).status_code == 401

        bob_notes = api.get("/api/sticky-notes", headers=bob).get_json()
        assert [n["text"] for n in bob_notes] == ["bob's note"]
        assert api.get(f"/api/tasks/{bob_task['id']}", headers=bob).get_json()["status"] == "active"

    def test_reorder_drops_foreign_id(self, api, register):
        alice = register("alice")
        bob = register("bob")
        a1, a2 = make_notes(api, alice, "A1", "A2")
        (b1,) = make_notes(api, bob, "B1")

        r = api.put("/api/sticky-notes/reorder", json={"orderedIds": [a2, b1, a1]}, headers=alice)
        assert r.status_code == 200
        assert [(n["text"], n["order"]) for n in r.get_json()] == [("A2", 0), ("A1", 1)]

        bob_notes = api.get("/api/sticky-notes", headers=bob).get_json()
        assert [(n["text"], n["order"]) for n in bob_notes] == [("B1", 0)]


def test_unknown_route_has_message(api):
    r = api.get("/api/nope")
    assert r.status_code == 404
    assert "message" in r.get_json()


def test_health(api):
    assert api.get("/health").get_json()["status"] == "ok"
