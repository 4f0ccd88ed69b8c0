"""Parsing and responses for the ``/lgtm`` slash command."""

from __future__ import annotations

import base64
import json
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlencode

GITHUB_AUTHORIZE_URL = "https://github.com/login/oauth/authorize"
OAUTH_CALLBACK_PATH = "/api/oauth/callback"
OAUTH_SCOPE = "repo"

CONNECT = "connect"
STATUS = "status"
DISCONNECT = "disconnect"
HELP = "help"
_KNOWN_ACTIONS = {CONNECT, STATUS, DISCONNECT, HELP}


@dataclass
class CommandContext:
    action: str
    argument: str = ""


def parse_slash_command(text: str) -> CommandContext:
    """Split the command text into an action and the remaining argument."""

    parts = (text or "").strip().split(maxsplit=1)
    if not parts:
        return CommandContext(action=HELP)
    action = parts[0].lower()
    if action not in _KNOWN_ACTIONS:
        return CommandContext(action=HELP, argument=parts[0])
    return CommandContext(action=action, argument=parts[1] if len(parts) > 1 else "")


def encode_oauth_state(slack_user_id: str) -> str:
    payload = json.dumps({"slack_user_id": slack_user_id}).encode("utf-8")
    return base64.b64encode(payload).decode("ascii")


def build_authorize_url(*, client_id: str, base_url: str, slack_user_id: str) -> str:
    host = base_url.removeprefix("https://").removeprefix("http://").rstrip("/")
    query = urlencode(
        {
            "client_id": client_id,
            "redirect_uri": f"https://{host}{OAUTH_CALLBACK_PATH}",
            "state": encode_oauth_state(slack_user_id),
            "scope": OAUTH_SCOPE,
        }
    )
    return f"{GITHUB_AUTHORIZE_URL}?{query}"


def build_connect_response(authorize_url: str) -> dict[str, Any]:
    return {
        "response_type": "ephemeral",
        "text": "Connect your GitHub account",
        "blocks": [
            {
                "type": "section",
                "text": {
                    "type": "mrkdwn",
                    "text": (
                        ":link: *Connect your GitHub account*\n\n"
                        "Click the button below to authorize the bot to approve PRs on your behalf."
                    ),
                },
            },
            {
                "type": "actions",
                "elements": [
                    {
                        "type": "button",
                        "text": {"type": "plain_text", "text": "Connect GitHub Account"},
                        "url": authorize_url,
                        "style": "primary",
                    }
                ],
            },
        ],
    }


def build_help_text(app_name: str, trigger_emoji: str, unknown: str = "") -> str:
    lines = []
    if unknown:
        lines.append(f"Unknown command `{unknown}`.")
    lines.extend(
        [
            f"`/{app_name} connect` link your GitHub account",
            f"`/{app_name} status` show which GitHub account is linked",
            f"`/{app_name} disconnect` forget your GitHub token",
            f"React with :{trigger_emoji}: to a message with PR links, or mention someone "
            "next to PR links, to approve as that person.",
        ]
    )
    return "\n".join(lines)
