import asyncio
from datetime import datetime, timedelta, timezone

from chartpad.db_models import Chart
from chartpad.store.sql_client import SqlStoreClient


def test_insert_returns_stored_record(session_factory):
    client = SqlStoreClient(session_factory)
    record = asyncio.run(client.insert_chart("graph TD\nA-->B", "user_1"))
    assert record.id
    assert record.content == "graph TD\nA-->B"
    assert record.user_id == "user_1"
    assert record.created_at is not None

    with session_factory() as db:
        rows = db.query(Chart).all()
    assert [(row.content, row.user_id) for row in rows] == [("graph TD\nA-->B", "user_1")]


def test_list_charts_is_newest_first(session_factory):
    base = datetime(2024, 1, 1, tzinfo=timezone.utc)
    with session_factory() as db:
        db.add_all(
            [
                Chart(content="first", user_id="user_1", created_at=base),
                Chart(content="third", user_id="user_2", created_at=base + timedelta(hours=2)),
                Chart(content="second", user_id="user_1", created_at=base + timedelta(hours=1)),
            ]
        )
        db.commit()

    client = SqlStoreClient(session_factory)
    assert [r.content for r in asyncio.run(client.list_charts())] == ["third", "second", "first"]
    assert [r.content for r in asyncio.run(client.list_charts(user_id="user_1"))] == ["second", "first"]


def test_created_at_is_assigned_by_the_database(session_factory):
    with session_factory() as db:
        chart = Chart(content="graph TD", user_id="user_1")
        assert chart.created_at is None
        db.add(chart)
        db.commit()
        db.refresh(chart)
        assert chart.created_at is not None
    assert Chart.__table__.c.created_at.server_default is not None
