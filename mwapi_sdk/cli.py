"""Demo CLI: log in, read the user's info and write a sandbox page."""

import logging
from datetime import datetime, timezone
from typing import Any

import click
from dotenv import find_dotenv, load_dotenv

from mwapi_sdk.client import MediaWikiClient, MediaWikiClientConfig
from mwapi_sdk.exceptions import MediaWikiError
from mwapi_sdk.tokens import TokenKind

logger = logging.getLogger(__name__)

ENV_ENDPOINT = "MW_API_ENDPOINT"
ENV_USERNAME = "MW_USERNAME"
ENV_PASSWORD = "MW_PASSWORD"


def _make_client(endpoint: str) -> MediaWikiClient:
    return MediaWikiClient(MediaWikiClientConfig(endpoint=endpoint, throw_on_api_error=True))


def _require_settings(endpoint: str | None, username: str | None, password: str | None) -> tuple[str, str, str]:
    missing = [
        name
        for name, value in ((ENV_ENDPOINT, endpoint), (ENV_USERNAME, username), (ENV_PASSWORD, password))
        if not value
    ]
    if missing:
        raise click.UsageError(f"missing settings: {', '.join(missing)}")
    return endpoint.strip(), username.strip(), password


def _query_userinfo(client: MediaWikiClient) -> dict[str, Any]:
    response = client.get({"action": "query", "meta": "userinfo", "uiprop": ["editcount"]})
    body = response.data if isinstance(response.data, dict) else {}
    userinfo = body.get("query", {}).get("userinfo") if isinstance(body.get("query"), dict) else None
    if not isinstance(userinfo, dict) or not userinfo.get("name"):
        raise click.ClickException("missing userinfo.name in response")
    return userinfo


def _demo_text(timestamp: str, endpoint: str) -> str:
    return (
        "== mwapi-sdk demo ==\n\n"
        f"Updated at: {timestamp} (UTC)\n\n"
        f"API endpoint: {endpoint}\n\n"
        "This page is written by the mwapi-sdk demo command for real-world testing.\n"
    )


class _DotenvGroup(click.Group):
    """Group that loads a .env file from the working directory before parsing options."""

    def main(self, *args: Any, **kwargs: Any) -> Any:
        load_dotenv(find_dotenv(usecwd=True), override=False)
        return super().main(*args, **kwargs)


@click.group(cls=_DotenvGroup)
@click.option("--endpoint", envvar=ENV_ENDPOINT, default=None, help="Full URL of the wiki's api.php.")
@click.option("--username", envvar=ENV_USERNAME, default=None, help="Bot or user name.")
@click.option("--password", envvar=ENV_PASSWORD, default=None, help="Bot password.")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.pass_context
def main(ctx: click.Context, endpoint: str | None, username: str | None, password: str | None, verbose: bool) -> None:
    """mwapi-sdk demo commands."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = {"endpoint": endpoint, "username": username, "password": password}


def _login(ctx: click.Context) -> tuple[MediaWikiClient, str]:
    endpoint, username, password = _require_settings(
        ctx.obj["endpoint"], ctx.obj["username"], ctx.obj["password"]
    )
    try:
        client = _make_client(endpoint)
    except MediaWikiError as exc:
        raise click.ClickException(str(exc)) from exc
    try:
        login = client.login(username, password)
    except MediaWikiError as exc:
        client.close()
        raise click.ClickException(str(exc)) from exc
    click.echo(f"login ok: {login.username} (id={login.user_id})")
    return client, endpoint


@main.command()
@click.pass_context
def whoami(ctx: click.Context) -> None:
    """Log in and print the current user's info."""
    client, _ = _login(ctx)
    with client:
        try:
            userinfo = _query_userinfo(client)
        except MediaWikiError as exc:
            raise click.ClickException(str(exc)) from exc
    click.echo(f"userinfo: name={userinfo.get('name')} id={userinfo.get('id')} editcount={userinfo.get('editcount')}")


@main.command()
@click.pass_context
def run(ctx: click.Context) -> None:
    """Log in, read userinfo and write a timestamped page in the user's namespace."""
    client, endpoint = _login(ctx)
    with client:
        try:
            userinfo = _query_userinfo(client)
            title = f"User:{userinfo['name']}/mwapi-sdk"
            timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
            response = client.write_with_token(
                TokenKind.CSRF,
                {
                    "action": "edit",
                    "title": title,
                    "text": _demo_text(timestamp, endpoint),
                    "summary": f"demo update timestamp: {timestamp}",
                    "minor": True,
                },
            )
        except MediaWikiError as exc:
            raise click.ClickException(str(exc)) from exc

    edit = response.data.get("edit") if isinstance(response.data, dict) else None
    if not isinstance(edit, dict) or not edit.get("result"):
        raise click.ClickException("missing edit.result in response")
    if str(edit["result"]).lower() != "success":
        raise click.ClickException(f"edit failed: {edit['result']}")
    click.echo(f"edit ok: {edit.get('title', title)} newrevid={edit.get('newrevid')} timestamp={edit.get('newtimestamp')}")


if __name__ == "__main__":
    main()
