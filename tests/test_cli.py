import json

from conftest import BASE_A, MIRROR, json_response, raw_post
from typer.testing import CliRunner

from storysync import cli
from storysync.workflows.content_api import ContentSynchronizer

runner = CliRunner()


def _patch_synchronizer(monkeypatch, config, store, transport):
    def factory(_loaded_config):
        return ContentSynchronizer(config, store=store, transport=transport, slug_refresh_delay=0)

    monkeypatch.setattr(cli, "ContentSynchronizer", factory)


def test_find_searches_commands_and_env():
    result = runner.invoke(cli.app, ["--find", "mirror"])

    assert result.exit_code == 0
    assert "env STORYSYNC_MIRROR_URL" in result.output


def test_help_full_lists_cache_families():
    result = runner.invoke(cli.app, ["--help-full"])

    assert result.exit_code == 0
    assert "snapshot" in result.output
    assert "STORYSYNC_CACHE_DIR" in result.output


def test_page_json_output(monkeypatch, config, store, transport):
    transport.route(f"{BASE_A}/posts", json_response([raw_post(1), raw_post(2, day=2)]))
    _patch_synchronizer(monkeypatch, config, store, transport)

    result = runner.invoke(cli.app, ["page", "--per-page", "2", "--json"])

    assert result.exit_code == 0
    payload = json.loads(result.stdout.strip().splitlines()[-1])
    assert [post["slug"] for post in payload["posts"]] == ["story-1", "story-2"]
    assert payload["source"] == BASE_A
    assert payload["from_cache"] is False


def test_post_prints_sanitized_story(monkeypatch, config, store, transport):
    transport.route(f"{BASE_A}/posts", json_response([raw_post(1)]))
    _patch_synchronizer(monkeypatch, config, store, transport)

    result = runner.invoke(cli.app, ["post", "story-1"])

    assert result.exit_code == 0
    assert "Story 1" in result.output
    assert "<p>Body of story 1.</p>" in result.output


def test_post_not_found_exits_one(monkeypatch, config, store, transport):
    transport.route(f"{BASE_A}/posts", json_response([]))
    transport.route(f"{MIRROR}/missing", json_response({}, status=404))
    _patch_synchronizer(monkeypatch, config, store, transport)

    result = runner.invoke(cli.app, ["post", "missing"])

    assert result.exit_code == 1
    assert "Post not found with slug: missing" in result.output
