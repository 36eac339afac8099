"""Tests for CSV row to PingOne user mapping."""

from pingone_bulk.pingone.mapping import has_changes, import_payload, map_user_record, modify_payload


def test_map_full_row():
    row = {
        "username": " jdoe ",
        "email": "jdoe@example.com",
        "firstName": "John",
        "lastName": "Doe",
        "title": "Engineer",
        "primaryPhone": "+1 555 0100",
        "mobilePhone": "+1 555 0199",
        "locality": "Denver",
        "countryCode": "US",
        "password": "S3cret!",
        "active": "false",
        "nickname": "",
    }

    user = map_user_record(row, default_population_id="pop-1")

    assert user["username"] == "jdoe"
    assert user["population"] == {"id": "pop-1"}
    assert user["name"] == {"given": "John", "family": "Doe"}
    assert user["title"] == "Engineer"
    assert "nickname" not in user
    assert user["enabled"] is False
    assert [p["type"] for p in user["phoneNumbers"]] == ["work", "mobile"]
    assert user["addresses"][0]["locality"] == "Denver"
    assert user["password"] == {"value": "S3cret!", "forceChange": False}


def test_row_population_wins():
    user = map_user_record({"username": "a", "populationId": "pop-9"}, default_population_id="pop-1")
    assert user["population"] == {"id": "pop-9"}


def test_import_payload_enabled_by_default():
    assert import_payload({"username": "a"})["enabled"] is True


def test_modify_payload_by_username():
    update = modify_payload({"username": "jdoe", "title": "Manager"})
    assert update == {"title": "Manager"}


def test_modify_payload_by_id_may_rename():
    update = modify_payload({"userId": "u-1", "username": "john.doe"})
    assert update == {"username": "john.doe"}


def test_modify_payload_explicit_user_data():
    update = modify_payload({"userId": "u-1", "userData": {"title": "CTO"}})
    assert update == {"title": "CTO"}


def test_has_changes():
    current = {"username": "jdoe", "name": {"given": "John", "family": "Doe"}, "title": "Engineer"}

    assert not has_changes({"title": "Engineer"}, current)
    assert not has_changes({"name": {"given": "John"}}, current)
    assert has_changes({"name": {"given": "Jon"}}, current)
    assert has_changes({"nickname": "JD"}, current)
