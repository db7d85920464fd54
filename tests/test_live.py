from app import socketio
from utils.grading_types import Section
from utils.live import section_version


def _events(client, name):
    return [r["args"][0] for r in client.get_received() if r["name"] == name]


def test_section_version_tracks_content(gradebook):
    renamed = Section.from_dict(dict(gradebook.to_dict(), name="Bonifacio"))
    assert section_version(gradebook) == section_version(Section.from_dict(gradebook.to_dict()))
    assert section_version(gradebook) != section_version(renamed)


def test_subscribe_section_sends_current_version(app, connected):
    client = socketio.test_client(app)
    client.get_received()

    client.emit("subscribe_section", {"section_id": "sec-1"})

    assert _events(client, "section_version") == [{"section_id": "sec-1", "version": section_version(connected)}]


def test_subscribe_unknown_section(app):
    client = socketio.test_client(app)
    client.get_received()
    client.emit("subscribe_section", {"section_id": "missing"})
    assert _events(client, "error")[0]["error"] == "not_found"


def test_save_broadcasts_new_version(app, sync, connected):
    client = socketio.test_client(app)
    client.emit("subscribe_section", {"section_id": "sec-1"})
    client.get_received()

    renamed = Section.from_dict(dict(connected.to_dict(), name="Bonifacio"))
    sync.save_section(renamed, sync=False)

    assert {"section_id": "sec-1", "version": section_version(renamed)} in _events(client, "section_version")


def test_visibility_change_notifies_learner(app, sync, connected):
    client = socketio.test_client(app)
    client.emit("subscribe_grades", {"user_id": "user-ana"})
    client.get_received()

    sync.set_student_visibility("user-ana", "sec-1", True)

    assert _events(client, "grades_updated") == [{"user_id": "user-ana", "section_id": "sec-1"}]
