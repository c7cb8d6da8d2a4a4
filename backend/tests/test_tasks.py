"""Tests for the Celery task wrappers (executed eagerly, no broker)."""

from celery_app import celery_app
from tasks.email_sync_tasks import (
    recover_stale_candidates_task,
    sync_all_connections_task,
    sync_connection_task,
)


def test_beat_schedule_registers_periodic_tasks():
    scheduled = {entry["task"] for entry in celery_app.conf.beat_schedule.values()}

    assert scheduled == {
        "tasks.email_sync_tasks.sync_all_connections_task",
        "tasks.email_sync_tasks.recover_stale_candidates_task",
    }
    assert "tasks.email_sync_tasks.sync_connection_task" in celery_app.tasks


def test_sync_connection_task_unknown_connection():
    result = sync_connection_task(999)

    assert result["status"] == "failed"
    assert result["connection_id"] == 999
    assert "not found" in result["error"]


def test_sync_all_connections_task_without_connections():
    assert sync_all_connections_task() == {
        "connections": 0,
        "success": 0,
        "errors": 0,
        "transactions": 0,
    }


def test_recover_stale_candidates_task():
    assert recover_stale_candidates_task() == {"recovered": 0, "released": 0, "abandoned": 0}
