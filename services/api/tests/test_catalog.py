import json
from unittest.mock import patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from app.errors import ValidationFailed
from app.models import Allergy, CatalogIngredient, Tool, UserAllergy
from app.services import catalog
from app.services.catalog import MasterDataTable


@pytest.fixture
def master_lists(db_session):
    db_session.add_all([
        Allergy(name="Peanut"), Allergy(name="Shellfish"), Allergy(name="Gluten"),
        Tool(name="Oven"), Tool(name="Blender"),
    ])
    db_session.commit()


def test_master_table_resolves_names_case_insensitively(db_session, master_lists):
    table = catalog.load_master_data(db_session, "1")

    ids = table.allergy_ids(["peanut", " PEANUT ", "Gluten"])

    assert len(ids) == 2
    assert ids[0] == table.allergies["peanut"]


def test_master_table_rejects_unknown_names(db_session, master_lists):
    table = catalog.load_master_data(db_session, "1")
    with pytest.raises(ValidationFailed, match="Unknown tools: wok"):
        table.tool_ids(["oven", "wok"])


def test_master_data_is_cached_per_version(db_session, master_lists, mock_redis):
    first = catalog.cached_master_data(db_session, "7")
    assert json.loads(mock_redis.get("fridgemate:master:7"))["version"] == "7"

    # new rows are invisible until the version changes
    db_session.add(Tool(name="Wok"))
    db_session.commit()
    assert catalog.cached_master_data(db_session, "7") == first
    assert "wok" in catalog.cached_master_data(db_session, "8").tools


def test_master_data_falls_back_to_database_without_redis(db_session, master_lists):
    with patch("app.services.catalog.get_or_set_json_sync", side_effect=RedisConnectionError("down")):
        table = catalog.cached_master_data(db_session, "1")
    assert isinstance(table, MasterDataTable)
    assert set(table.tools) == {"oven", "blender"}


def test_find_or_create_ingredient(db_session):
    a = catalog.find_or_create_ingredient(db_session, " Kale ")
    b = catalog.find_or_create_ingredient(db_session, "KALE")
    db_session.commit()

    assert a.id == b.id
    assert a.name == "Kale"
    assert db_session.query(CatalogIngredient).count() == 1

    with pytest.raises(ValidationFailed):
        catalog.find_or_create_ingredient(db_session, "   ")


# --- API ---

def test_replace_allergies_round_trip(client, auth, master_lists):
    resp = client.put("/api/profile/allergies", json={"names": ["shellfish", "Peanut"]}, headers=auth)
    assert resp.status_code == 200, resp.text
    assert resp.json() == {"names": ["Peanut", "Shellfish"]}

    resp = client.put("/api/profile/allergies", json={"names": ["gluten"]}, headers=auth)
    assert resp.json() == {"names": ["Gluten"]}

    assert client.get("/api/profile/allergies", headers=auth).json() == {"names": ["Gluten"]}


def test_unknown_name_rejects_whole_update(client, auth, db_session, user, master_lists):
    client.put("/api/profile/allergies", json={"names": ["peanut"]}, headers=auth)

    resp = client.put("/api/profile/allergies", json={"names": ["gluten", "moonbeams"]}, headers=auth)

    assert resp.status_code == 400
    assert resp.json()["detail"]["error"] == "validation"
    assert db_session.query(UserAllergy).filter_by(user_id=user.id).count() == 1


def test_replace_with_empty_list_clears(client, auth, master_lists):
    client.put("/api/profile/tools", json={"names": ["oven", "blender"]}, headers=auth)

    resp = client.put("/api/profile/tools", json={"names": []}, headers=auth)

    assert resp.json() == {"names": []}
    assert client.get("/api/profile/tools", headers=auth).json() == {"names": []}


def test_tools_are_per_user(client, auth, other_user, master_lists):
    client.put("/api/profile/tools", json={"names": ["oven"]}, headers=auth)

    resp = client.get("/api/profile/tools", headers={"X-User-Id": other_user.id})
    assert resp.json() == {"names": []}
