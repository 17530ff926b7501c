"""Tests for GitLab discussions mapping and glab command shapes."""

from __future__ import annotations

import pytest
from conftest import FakeRunner

from pr_monitor.errors import InvalidConfiguration, InvalidResponse
from pr_monitor.models import ReviewState
from pr_monitor.providers.gitlab import GitLabProvider, parse_discussions, parse_pipelines

WEB_URL = "https://gitlab.com/acme/api/-/merge_requests/5"

DISCUSSIONS = [
    {
        "id": "d-general",
        "notes": [
            {
                "id": 1,
                "body": "Please rebase",
                "author": {"username": "alice"},
                "created_at": "2024-05-01T09:00:00Z",
                "system": False,
            },
            {
                "id": 2,
                "body": "added 1 commit",
                "author": {"username": "bob"},
                "created_at": "2024-05-01T09:05:00Z",
                "system": True,
            },
        ],
    },
    {
        "id": "d-inline",
        "notes": [
            {
                "id": 10,
                "body": "Rename this",
                "author": {"username": "carol"},
                "created_at": "2024-05-01T10:00:00Z",
                "position": {"new_path": "app.py", "new_line": 4},
                "resolvable": True,
                "resolved": False,
            },
            {
                "id": 11,
                "body": "Done",
                "author": {"username": "dave"},
                "created_at": "2024-05-01T10:30:00Z",
                "position": {"old_path": "old.py", "new_line": None, "old_line": 9},
                "resolvable": True,
                "resolved": True,
            },
        ],
    },
    {
        "id": "d-unresolvable",
        "notes": [
            {
                "id": 20,
                "body": "FYI",
                "author": {"username": "erin"},
                "created_at": "2024-05-02T08:00:00Z",
                "position": {"new_path": "b.py", "new_line": 1},
                "resolvable": False,
            }
        ],
    },
]


def test_discussions_split_into_general_comments_and_reviews() -> None:
    comments, reviews = parse_discussions(DISCUSSIONS, web_url=WEB_URL)

    assert [c.id for c in comments] == ["1"]
    assert comments[0].author == "alice"
    assert comments[0].author_association == "MEMBER"
    assert comments[0].url == f"{WEB_URL}#note_1"

    assert [r.id for r in reviews] == ["d-inline", "d-unresolvable"]
    inline = reviews[0]
    assert inline.author == "carol"
    assert inline.state == ReviewState.COMMENTED
    assert inline.submitted_at == "2024-05-01T10:00:00Z"
    first, second = inline.comments or []
    assert (first.path, first.line, first.thread_id, first.is_resolved) == (
        "app.py",
        4,
        "d-inline",
        False,
    )
    assert (second.path, second.line, second.is_resolved) == ("old.py", 9, True)


def test_non_resolvable_notes_have_unknown_resolution() -> None:
    _comments, reviews = parse_discussions(DISCUSSIONS)
    (note,) = reviews[1].comments or []
    assert note.is_resolved is None


def test_general_note_url_is_empty_without_web_url() -> None:
    comments, _reviews = parse_discussions(DISCUSSIONS)
    assert comments[0].url == ""


def test_malformed_discussions_raise_invalid_response() -> None:
    with pytest.raises(InvalidResponse):
        parse_discussions({"id": "x"})
    with pytest.raises(InvalidResponse):
        parse_discussions([{"notes": []}])


def test_latest_pipeline_becomes_the_only_check() -> None:
    checks = parse_pipelines(
        [
            {"id": 3, "ref": "feature", "status": "failed", "web_url": "https://ci/3",
             "updated_at": "2024-05-02T00:00:00Z"},
            {"id": 2, "ref": "feature", "status": "success"},
        ]
    )
    assert len(checks) == 1
    assert checks[0].name == "pipeline feature"
    assert checks[0].conclusion == "failed"
    assert checks[0].is_failing


def test_running_pipeline_has_no_conclusion() -> None:
    (check,) = parse_pipelines([{"id": 4, "status": "running"}])
    assert check.name == "pipeline 4"
    assert check.status == "running"
    assert check.conclusion is None
    assert check.completed_at is None
    assert parse_pipelines([]) == []


async def test_fetch_pr_uses_view_iid_for_discussions() -> None:
    runner = FakeRunner()
    runner.add(
        "glab", "mr", "view",
        result={"iid": 5, "description": "Adds caching", "web_url": WEB_URL},
    )
    runner.add("glab", "api", "projects/:id/merge_requests/5/discussions", result=DISCUSSIONS)

    pr = await GitLabProvider(runner=runner, cwd="/work/api").fetch_pr("")

    assert pr.body == "Adds caching"
    assert pr.number is None
    assert pr.files is None
    assert [c.id for c in pr.comments] == ["1"]
    assert runner.argv_for("glab")[0] == ["mr", "view", "--output", "json"]
    assert all(cwd == "/work/api" for _name, _args, cwd in runner.calls)


async def test_fetch_pr_passes_repo_override() -> None:
    runner = FakeRunner()
    runner.add("glab", "mr", "view", result={"iid": 5})
    runner.add("glab", "api", result=[])

    await GitLabProvider(runner=runner).fetch_pr("5", repo="acme/api")

    view_args, api_args = runner.argv_for("glab")
    assert view_args == ["mr", "view", "5", "--output", "json", "--repo", "acme/api"]
    assert api_args[-2:] == ["--repo", "acme/api"]


async def test_invalid_repo_is_rejected_before_any_call() -> None:
    runner = FakeRunner()
    with pytest.raises(InvalidConfiguration):
        await GitLabProvider(runner=runner).fetch_pr("5", repo="acme")
    assert runner.calls == []


async def test_reply_resolve_and_note_commands() -> None:
    runner = FakeRunner()
    runner.add("glab", result=b"{}")
    provider = GitLabProvider(runner=runner)

    await provider.reply_to_comment("5", "10", "Fixed")
    await provider.resolve_thread("5", "d-inline", repo="acme/api")
    await provider.post_comment("5", "Ready for review")

    reply, resolve, note = runner.argv_for("glab")
    assert reply == [
        "api", "projects/:id/merge_requests/5/notes", "-f", "body=Fixed", "--method", "POST",
    ]
    assert resolve == [
        "api",
        "projects/:id/merge_requests/5/discussions/d-inline",
        "-f",
        "resolved=true",
        "--method",
        "PUT",
        "--repo",
        "acme/api",
    ]
    assert note == ["mr", "note", "5", "--message", "Ready for review"]


async def test_list_open_merge_requests() -> None:
    runner = FakeRunner()
    runner.add(
        "glab", "mr", "list",
        result=[
            {
                "iid": 5,
                "title": "Add cache",
                "author": {"username": "alice"},
                "web_url": WEB_URL,
                "updated_at": "2024-05-03T00:00:00Z",
            }
        ],
    )
    (summary,) = await GitLabProvider(runner=runner).list_open_pull_requests()
    assert (summary.number, summary.author, summary.url) == (5, "alice", WEB_URL)


async def test_missing_glab_marks_provider_unavailable() -> None:
    provider = GitLabProvider(runner=FakeRunner(installed=("gh",)))
    assert await provider.is_available() is False


async def test_same_payloads_reconcile_to_identical_models() -> None:
    runner = FakeRunner()
    runner.add("glab", "mr", "view", result={"iid": 5, "description": "Adds caching"})
    runner.add("glab", "api", result=DISCUSSIONS)
    provider = GitLabProvider(runner=runner)

    first = await provider.fetch_pr("5")
    second = await provider.fetch_pr("5")

    assert first.model_dump_json() == second.model_dump_json()
