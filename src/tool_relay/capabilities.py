# capabilities.py
# Capability handlers and the registry that wires them up.
#
# Each handler is a plain function: validated args model (plus injected
# dependencies) in, a string or JSON-able value out. Failures are raised,
# never returned; the invoker turns them into error envelopes.

import contextlib
import os
import sqlite3
import subprocess
import uuid
from functools import partial
from urllib.parse import quote

import httpx
from pydantic import BaseModel, Field

from tool_relay import statements
from tool_relay.config import Settings
from tool_relay.registry import CapabilityError, CapabilityRegistry
from tool_relay.sandbox import PathGuard

FETCH_LIMIT = 5000
BRAVE_SEARCH_URL = "https://api.search.brave.com/res/v1/web/search"
ESPN_SCOREBOARD_URL = "https://site.api.espn.com/apis/site/v2/sports/{category}/{league}/scoreboard"

SPORT_ENDPOINTS: dict[str, tuple[str, str]] = {
    "nfl":       ("football", "nfl"),
    "nba":       ("basketball", "nba"),
    "mlb":       ("baseball", "mlb"),
    "nhl":       ("hockey", "nhl"),
    "mls":       ("soccer", "usa.1"),
    "epl":       ("soccer", "eng.1"),
    "ncaam":     ("basketball", "mens-college-basketball"),
    "ncaaw":     ("basketball", "womens-college-basketball"),
    "ncaaf":     ("football", "college-football"),
    "wnba":      ("basketball", "wnba"),
    "champions": ("soccer", "uefa.champions"),
    "fifa":      ("soccer", "fifa.world"),
    "nwsl":      ("soccer", "usa.nwsl"),
    "f1":        ("racing", "f1"),
    "pga":       ("golf", "pga"),
    "atp":       ("tennis", "atp"),
    "wta":       ("tennis", "wta"),
}

_LEAGUES = ", ".join(SPORT_ENDPOINTS)


# ---------------------------------------------------------------------------
# Argument models
# ---------------------------------------------------------------------------


class PathArgs(BaseModel):
    path: str = Field(..., description="Relative path inside workspace")


class WriteFileArgs(BaseModel):
    path: str = Field(..., description="Relative path inside workspace")
    content: str = Field(..., description="Content to write")


class ListDirectoryArgs(BaseModel):
    path: str = Field(default=".", description="Relative sub-path (default: root of workspace)")


class FetchUrlArgs(BaseModel):
    url: str = Field(..., description="URL to fetch")


class WeatherArgs(BaseModel):
    city: str = Field(..., description="City name, e.g. 'London'")


class SportsArgs(BaseModel):
    league: str = Field(..., description=f"League abbreviation: {_LEAGUES}")


class RunCodeArgs(BaseModel):
    code: str = Field(..., description="Python code to execute")


class WebSearchArgs(BaseModel):
    query: str = Field(..., description="Search query")
    count: int = Field(default=5, description="Number of results (default 5)")


class QueryDatabaseArgs(BaseModel):
    sql: str = Field(..., description="SQL statement to execute")


# ---------------------------------------------------------------------------
# Filesystem
# ---------------------------------------------------------------------------


def _tool_read_file(args: PathArgs, guard: PathGuard) -> str:
    with open(guard.resolve(args.path), encoding="utf-8") as fh:
        return fh.read()


def _tool_write_file(args: WriteFileArgs, guard: PathGuard) -> str:
    resolved = guard.resolve(args.path)
    os.makedirs(os.path.dirname(resolved), exist_ok=True)
    with open(resolved, "w", encoding="utf-8") as fh:
        fh.write(args.content)
    return f"Wrote {len(args.content)} chars to {args.path}"


def _tool_list_directory(args: ListDirectoryArgs, guard: PathGuard) -> str:
    with os.scandir(guard.resolve(args.path)) as it:
        entries = sorted(it, key=lambda e: e.name)
    lines = [f"{'[dir]' if e.is_dir() else '[file]'} {e.name}" for e in entries]
    return "\n".join(lines) or "(empty directory)"


# ---------------------------------------------------------------------------
# Network
# ---------------------------------------------------------------------------


def _tool_fetch_url(args: FetchUrlArgs, timeout: float) -> str:
    response = httpx.get(args.url, timeout=timeout, follow_redirects=True)
    if not response.is_success:
        raise CapabilityError(f"HTTP {response.status_code} {response.reason_phrase}")
    body = response.text
    if len(body) > FETCH_LIMIT:
        body = body[:FETCH_LIMIT] + "\n... (truncated)"
    return body


def _tool_get_weather(args: WeatherArgs, timeout: float) -> str:
    url = f"https://wttr.in/{quote(args.city)}"
    response = httpx.get(url, params={"format": "3"}, timeout=timeout)
    if not response.is_success:
        raise CapabilityError(f"Weather service error: HTTP {response.status_code}")
    return response.text.strip()


def _format_event(event: dict) -> str:
    competitions = event.get("competitions") or [{}]
    teams = competitions[0].get("competitors") or []
    status = ((event.get("status") or {}).get("type") or {}).get("description") or "Unknown"
    matchup = "  vs  ".join(
        f"{(t.get('team') or {}).get('displayName') or '?'} {t.get('score') or '-'}" for t in teams
    )
    return f"{matchup}  ({status})"


def _tool_get_sports_scores(args: SportsArgs, timeout: float) -> str:
    key = args.league.lower()
    if key not in SPORT_ENDPOINTS:
        raise CapabilityError(f'Unknown league "{args.league}". Supported: {_LEAGUES}')

    category, league = SPORT_ENDPOINTS[key]
    response = httpx.get(ESPN_SCOREBOARD_URL.format(category=category, league=league), timeout=timeout)
    if not response.is_success:
        raise CapabilityError(f"ESPN API error: HTTP {response.status_code}")

    data = response.json()
    events = data.get("events") or []
    if not events:
        return f"No games found for {key.upper()} right now."

    leagues = data.get("leagues") or [{}]
    header = leagues[0].get("name") or key.upper()
    return f"{header} Scores:\n" + "\n".join(_format_event(ev) for ev in events)


def _tool_web_search(args: WebSearchArgs, api_key: str, timeout: float) -> str:
    if not api_key:
        raise CapabilityError("BRAVE_API_KEY is not set in environment variables.")

    response = httpx.get(
        BRAVE_SEARCH_URL,
        params={"q": args.query, "count": args.count},
        headers={"X-Subscription-Token": api_key, "Accept": "application/json"},
        timeout=timeout,
    )
    if not response.is_success:
        raise CapabilityError(
            f"Brave Search API error: HTTP {response.status_code} {response.reason_phrase}"
        )

    results = (response.json().get("web") or {}).get("results") or []
    if not results:
        return f'No results found for "{args.query}".'

    lines = []
    for i, r in enumerate(results, start=1):
        lines.append(
            f"{i}. {r.get('title') or '(no title)'}\n   {r.get('url', '')}\n   {r.get('description', '')}"
        )
    return "\n\n".join(lines)


# ---------------------------------------------------------------------------
# Code execution
# ---------------------------------------------------------------------------


def _tool_run_code(args: RunCodeArgs, workspace: str, python: str, timeout: float) -> str:
    """
    Run a throwaway script in the workspace under a hard wall-clock limit.

    The child gets no stdin; in the host that stream is the wire channel.
    subprocess.run kills the child on timeout. The script file is removed on
    every exit path, including the timeout.
    """
    tmp_dir = os.path.join(workspace, ".tmp")
    os.makedirs(tmp_dir, exist_ok=True)
    tmp_file = os.path.join(tmp_dir, f"{uuid.uuid4()}.py")
    try:
        with open(tmp_file, "w", encoding="utf-8") as fh:
            fh.write(args.code)
        try:
            completed = subprocess.run(
                [python, tmp_file],
                cwd=workspace,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise CapabilityError(f"Execution error: timed out after {timeout:g}s") from exc

        output = (completed.stdout + completed.stderr).strip()
        if completed.returncode != 0:
            raise CapabilityError(f"Execution error: exit code {completed.returncode}\n{output}")
        return output or "(no output)"
    finally:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(tmp_file)


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


def _tool_query_database(args: QueryDatabaseArgs, conn: sqlite3.Connection) -> object:
    return statements.execute(conn, args.sql)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


def build_registry(settings: Settings, conn: sqlite3.Connection) -> CapabilityRegistry:
    """Register every capability against one workspace and one shared store."""
    settings.ensure_dirs()
    workspace = str(settings.resolved_workspace_dir)
    guard = PathGuard(workspace)
    http_timeout = settings.http_timeout

    registry = CapabilityRegistry()
    registry.register(
        "read_file",
        "Read the contents of a file inside the workspace directory.",
        PathArgs,
        partial(_tool_read_file, guard=guard),
    )
    registry.register(
        "write_file",
        "Write content to a file inside the workspace directory. Creates parent directories if needed.",
        WriteFileArgs,
        partial(_tool_write_file, guard=guard),
    )
    registry.register(
        "list_directory",
        "List files and directories inside the workspace directory.",
        ListDirectoryArgs,
        partial(_tool_list_directory, guard=guard),
    )
    registry.register(
        "fetch_url",
        f"Fetch the content of a URL and return the response body (truncated to {FETCH_LIMIT} chars).",
        FetchUrlArgs,
        partial(_tool_fetch_url, timeout=http_timeout),
    )
    registry.register(
        "get_weather",
        "Get the current weather for a city using wttr.in (no API key needed).",
        WeatherArgs,
        partial(_tool_get_weather, timeout=http_timeout),
    )
    registry.register(
        "get_sports_scores",
        f"Get recent/live sports scores from ESPN. Supported leagues: {_LEAGUES}.",
        SportsArgs,
        partial(_tool_get_sports_scores, timeout=http_timeout),
    )
    registry.register(
        "run_code",
        "Run a Python script and return its output (stdout + stderr). "
        f"Execution is time-limited to {settings.code_timeout:g} seconds.",
        RunCodeArgs,
        partial(
            _tool_run_code,
            workspace=workspace,
            python=settings.python_executable,
            timeout=settings.code_timeout,
        ),
    )
    registry.register(
        "web_search",
        "Search the web using Brave Search and return top results.",
        WebSearchArgs,
        partial(_tool_web_search, api_key=settings.brave_api_key, timeout=http_timeout),
    )
    registry.register(
        "query_database",
        "Run a SQL query against the workspace SQLite database. "
        "Supports SELECT, INSERT, UPDATE, DELETE, CREATE TABLE, etc.",
        QueryDatabaseArgs,
        partial(_tool_query_database, conn=conn),
    )
    return registry
