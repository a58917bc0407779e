from __future__ import annotations

import json

import pytest

from platforms.local import LocalAdapter
from reconciler.models import ActionType, PostAction, PostPlan


def test_no_comments_file_means_no_comments():
    assert LocalAdapter().list_comments() == []


def test_missing_comments_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        LocalAdapter(str(tmp_path / "nope.json")).list_comments()


@pytest.mark.parametrize("wrapped", [False, True])
def test_reads_list_or_wrapped_object(tmp_path, wrapped):
    items = [{"id": 1, "body": "x", "path": "a.py", "line": 3, "threadId": "t1"}]
    path = tmp_path / "comments.json"
    path.write_text(json.dumps({"comments": items} if wrapped else items), encoding="utf-8")

    [comment] = LocalAdapter(str(path)).list_comments()

    assert (comment.id, comment.thread_id, comment.line) == ("1", "t1", 3)


def test_apply_post_plan_only_reports():
    plan = PostPlan(
        actions=[
            PostAction(
                action=ActionType.UPDATE, target_comment_id="c1", markers_to_remove=["fp"]
            ),
            PostAction(action=ActionType.RESOLVE_THREAD, target_comment_id="c2", thread_id="t2"),
        ]
    )

    report = LocalAdapter().apply_post_plan(plan)

    assert report.ok
    assert report.updated == ["c1"]
    assert report.resolved == ["t2"]


def test_summary_upsert_is_reported():
    plan = PostPlan(
        actions=[
            PostAction(action=ActionType.UPSERT_SUMMARY, body="## AI Code Review Summary"),
            PostAction(
                action=ActionType.UPSERT_SUMMARY, target_comment_id="s1", body="updated"
            ),
        ]
    )

    report = LocalAdapter().apply_post_plan(plan)

    assert report.created == ["local-1"]
    assert report.updated == ["s1"]
