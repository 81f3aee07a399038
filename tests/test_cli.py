from __future__ import annotations

from unittest.mock import patch
from urllib.parse import parse_qsl

import httpx
from click.testing import CliRunner

from mwapi_sdk import MediaWikiClient, MediaWikiClientConfig
from mwapi_sdk.cli import main

ENV = {
    "MW_API_ENDPOINT": "https://wiki.example.org/w/api.php",
    "MW_USERNAME": "UserA@demo",
    "MW_PASSWORD": "bot-password",
}


def _form(request: httpx.Request) -> dict[str, str]:
    fields = dict(request.url.params.items())
    if request.method == "POST":
        fields.update(parse_qsl(request.read().decode("utf-8")))
    return fields


def _wiki(edits: list[dict[str, str]], edit_result: str = "Success"):
    def handler(request: httpx.Request) -> httpx.Response:
        form = _form(request)
        if form.get("meta") == "tokens":
            kind = form["type"]
            return httpx.Response(200, json={"query": {"tokens": {f"{kind}token": f"{kind.upper()}_TOKEN"}}})
        if form.get("action") == "login":
            return httpx.Response(200, json={"login": {"result": "Success", "lguserid": 5, "lgusername": "UserA"}})
        if form.get("meta") == "userinfo":
            assert form["uiprop"] == "editcount"
            return httpx.Response(200, json={"query": {"userinfo": {"id": 5, "name": "UserA", "editcount": 12}}})
        if form.get("action") == "edit":
            edits.append(form)
            return httpx.Response(
                200,
                json={"edit": {"result": edit_result, "title": form["title"], "newrevid": 99, "newtimestamp": "T"}},
            )
        return httpx.Response(200, json={"error": {"code": "badtest", "info": "unhandled request"}})

    return handler


def _client_factory(handler):
    def make(endpoint: str) -> MediaWikiClient:
        return MediaWikiClient(
            MediaWikiClientConfig(endpoint=endpoint, throw_on_api_error=True),
            http_client=httpx.Client(transport=httpx.MockTransport(handler)),
        )

    return make


def test_run_logs_in_and_edits_user_page() -> None:
    edits: list[dict[str, str]] = []
    runner = CliRunner()
    with patch("mwapi_sdk.cli._make_client", _client_factory(_wiki(edits))):
        result = runner.invoke(main, ["run"], env=ENV)

    assert result.exit_code == 0, result.output
    assert "login ok: UserA (id=5)" in result.output
    assert "edit ok: User:UserA/mwapi-sdk newrevid=99" in result.output
    [edit] = edits
    assert edit["token"] == "CSRF_TOKEN"
    assert edit["minor"] == "1"
    assert edit["assertuser"] == "UserA"
    assert "mwapi-sdk demo" in edit["text"]


def test_run_reports_failed_edit() -> None:
    runner = CliRunner()
    with patch("mwapi_sdk.cli._make_client", _client_factory(_wiki([], edit_result="Failure"))):
        result = runner.invoke(main, ["run"], env=ENV)

    assert result.exit_code == 1
    assert "edit failed: Failure" in result.output


def test_whoami_prints_userinfo() -> None:
    runner = CliRunner()
    with patch("mwapi_sdk.cli._make_client", _client_factory(_wiki([]))):
        result = runner.invoke(main, ["whoami"], env=ENV)

    assert result.exit_code == 0, result.output
    assert "userinfo: name=UserA id=5 editcount=12" in result.output


def test_missing_settings_are_reported_together() -> None:
    runner = CliRunner()
    result = runner.invoke(
        main,
        ["whoami"],
        env={"MW_API_ENDPOINT": "", "MW_USERNAME": "", "MW_PASSWORD": ""},
    )

    assert result.exit_code == 2
    assert "MW_API_ENDPOINT" in result.output
    assert "MW_USERNAME" in result.output
    assert "MW_PASSWORD" in result.output


def test_invalid_endpoint_is_reported() -> None:
    runner = CliRunner()
    result = runner.invoke(main, ["--endpoint", "https://wiki.example.org/index.php", "whoami"], env=ENV)

    assert result.exit_code == 1
    assert "api.php" in result.output


def test_settings_are_read_from_dotenv_file(tmp_path) -> None:
    runner = CliRunner()
    with runner.isolated_filesystem(temp_dir=tmp_path):
        with open(".env", "w", encoding="utf-8") as env_file:
            env_file.write("".join(f"{name}={value}\n" for name, value in ENV.items()))
        with patch("mwapi_sdk.cli._make_client", _client_factory(_wiki([]))):
            result = runner.invoke(main, ["whoami"], env={name: None for name in ENV})

    assert result.exit_code == 0, result.output
    assert "login ok: UserA (id=5)" in result.output


def test_environment_wins_over_dotenv_file(tmp_path) -> None:
    runner = CliRunner()
    with runner.isolated_filesystem(temp_dir=tmp_path):
        with open(".env", "w", encoding="utf-8") as env_file:
            env_file.write("MW_API_ENDPOINT=https://wiki.example.org/w/index.php\n")
        with patch("mwapi_sdk.cli._make_client", _client_factory(_wiki([]))):
            result = runner.invoke(main, ["whoami"], env=ENV)

    assert result.exit_code == 0, result.output
