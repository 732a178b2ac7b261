"""Tests for the SQLite persistence layer."""

import aiosqlite
import pytest

from smtp_mail_service.persistence import Persistence, utc_timestamp


def profile_data(name: str, **overrides):
    data = {
        "name": name,
        "host": "smtp.example.com",
        "port": 587,
        "username": "u",
        "password": "sealed",
        "from_email": "a@x.com",
        "from_name": None,
        "encryption": "starttls",
        "is_default": False,
    }
    data.update(overrides)
    return data


def history_data(status: str, **overrides):
    data = {
        "smtp_config_id": 1,
        "to_email": "b@y.com",
        "cc_email": ["c@y.com"],
        "bcc_email": [],
        "subject": "Hi",
        "body": "<p>hi</p>",
        "attachments": [{"filename": "a.pdf", "size": 12}],
        "status": status,
        "error_message": "" if status == "success" else "data failed: 554 rejected",
        "sent_at": utc_timestamp(),
    }
    data.update(overrides)
    return data


async def make_persistence(tmp_path) -> Persistence:
    p = Persistence(str(tmp_path / "nested" / "test.db"))
    await p.init_db()
    return p


def test_utc_timestamp_is_iso_with_z_suffix():
    ts = utc_timestamp()
    assert ts.endswith("Z")
    assert "T" in ts


@pytest.mark.asyncio
async def test_init_db_is_idempotent_and_creates_parent_dir(tmp_path):
    p = await make_persistence(tmp_path)
    await p.init_db()
    assert (tmp_path / "nested" / "test.db").exists()


@pytest.mark.asyncio
async def test_profile_crud(tmp_path):
    p = await make_persistence(tmp_path)
    profile_id = await p.add_profile(profile_data("primary"))

    row = await p.get_profile(profile_id)
    assert row["name"] == "primary"
    assert row["password"] == "sealed"
    assert row["is_default"] is False
    assert row["created_at"].endswith("Z")

    assert await p.update_profile(profile_id, {"host": "mail.example.com", "bogus": 1}) is True
    assert (await p.get_profile(profile_id))["host"] == "mail.example.com"

    assert await p.update_profile(999, {"host": "x"}) is False
    assert await p.delete_profile(profile_id) is True
    assert await p.get_profile(profile_id) is None
    assert await p.delete_profile(profile_id) is False


@pytest.mark.asyncio
async def test_single_default_across_create_update_and_set_default(tmp_path):
    p = await make_persistence(tmp_path)
    first = await p.add_profile(profile_data("first", is_default=True))
    second = await p.add_profile(profile_data("second", is_default=True))

    defaults = [r["id"] for r in await p.list_profiles() if r["is_default"]]
    assert defaults == [second]

    await p.update_profile(first, {"is_default": True})
    defaults = [r["id"] for r in await p.list_profiles() if r["is_default"]]
    assert defaults == [first]

    assert await p.set_default_profile(second) is True
    defaults = [r["id"] for r in await p.list_profiles() if r["is_default"]]
    assert defaults == [second]
    assert (await p.get_default_profile())["id"] == second


@pytest.mark.asyncio
async def test_set_default_unknown_profile_keeps_current_default(tmp_path):
    p = await make_persistence(tmp_path)
    current = await p.add_profile(profile_data("current", is_default=True))

    assert await p.set_default_profile(404) is False
    assert (await p.get_default_profile())["id"] == current


@pytest.mark.asyncio
async def test_unique_index_rejects_second_default(tmp_path):
    p = await make_persistence(tmp_path)
    await p.add_profile(profile_data("first", is_default=True))
    second = await p.add_profile(profile_data("second"))

    async with aiosqlite.connect(p.db_path) as db:
        with pytest.raises(aiosqlite.IntegrityError):
            await db.execute("UPDATE smtp_configs SET is_default = 1 WHERE id = ?", (second,))


@pytest.mark.asyncio
async def test_template_crud_and_unique_name(tmp_path):
    p = await make_persistence(tmp_path)
    template_id = await p.add_template({"name": "welcome", "subject": "Hello", "body": "<p>x</p>"})

    assert (await p.get_template(template_id))["subject"] == "Hello"
    assert (await p.get_template_by_name("welcome"))["id"] == template_id
    assert await p.template_name_exists("welcome") is True
    assert await p.template_name_exists("welcome", exclude_id=template_id) is False

    with pytest.raises(aiosqlite.IntegrityError):
        await p.add_template({"name": "welcome", "subject": "Again", "body": "<p>y</p>"})

    assert await p.update_template(template_id, {"subject": "Hi there"}) is True
    assert (await p.get_template(template_id))["subject"] == "Hi there"
    assert len(await p.list_templates()) == 1
    assert await p.delete_template(template_id) is True
    assert await p.get_template(template_id) is None


@pytest.mark.asyncio
async def test_history_json_columns_round_trip(tmp_path):
    p = await make_persistence(tmp_path)
    history_id = await p.add_history(history_data("success"))

    row = await p.get_history(history_id)
    assert row["cc_email"] == ["c@y.com"]
    assert row["bcc_email"] == []
    assert row["attachments"] == [{"filename": "a.pdf", "size": 12}]


@pytest.mark.asyncio
async def test_history_pagination_filter_and_counts(tmp_path):
    p = await make_persistence(tmp_path)
    ids = []
    for i in range(5):
        status = "failed" if i % 2 else "success"
        ids.append(await p.add_history(history_data(status, subject=f"m{i}")))

    items, total = await p.list_history(limit=2, offset=0)
    assert total == 5
    assert [item["id"] for item in items] == [ids[4], ids[3]]

    items, total = await p.list_history(limit=10, offset=0, status="failed")
    assert total == 2
    assert all(item["status"] == "failed" for item in items)

    assert await p.count_history_by_status() == {"success": 3, "failed": 2}

    assert await p.delete_history(ids[0]) is True
    assert await p.get_history(ids[0]) is None
    assert await p.delete_history(ids[0]) is False


@pytest.mark.parametrize("db_path", ["", ":memory:"])
def test_in_memory_database_is_rejected(db_path):
    with pytest.raises(ValueError):
        Persistence(db_path)


@pytest.mark.asyncio
async def test_schema_survives_across_operations(tmp_path):
    p = Persistence(str(tmp_path / "nested" / "store.db"))
    await p.init_db()

    assert await p.list_profiles() == []
    assert (tmp_path / "nested" / "store.db").exists()
