"""Self-closing popup page returned by the provider callback.

The page is the only consumer-facing output of the callback: it shows a
short success / failure notice, posts exactly one ``oauth-complete`` message
to ``window.opener`` and closes itself after two seconds.
"""

from __future__ import annotations

import html
import json
from typing import Any

from starlette.responses import HTMLResponse

from oauth_link_broker.link.models import LinkOutcome

MESSAGE_TYPE = "oauth-complete"
CLOSE_DELAY_MS = 2000

_STYLE = """
        body {
            font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', system-ui, sans-serif;
            display: flex;
            align-items: center;
            justify-content: center;
            min-height: 100vh;
            margin: 0;
            background: linear-gradient(135deg, #667eea 0%, #764ba2 100%);
            color: white;
        }
        .container {
            text-align: center;
            padding: 2rem;
            background: rgba(255, 255, 255, 0.1);
            border-radius: 12px;
            border: 1px solid rgba(255, 255, 255, 0.2);
        }
        .icon { font-size: 3rem; margin-bottom: 1rem; }
        .title { font-size: 1.5rem; font-weight: 600; margin-bottom: 0.5rem; }
        .message { opacity: 0.9; margin-bottom: 1rem; }
"""


def _script_json(value: Any) -> str:
    """JSON-encode *value* for embedding inside a ``<script>`` element."""
    return (
        json.dumps(value)
        .replace("<", "\\u003c")
        .replace(">", "\\u003e")
        .replace("&", "\\u0026")
    )


def opener_message(outcome: LinkOutcome) -> dict[str, Any]:
    """The object posted to ``window.opener``."""
    return {
        "type": MESSAGE_TYPE,
        "success": outcome.success,
        "linkSessionId": outcome.link_session_id,
        "error": None if outcome.success else (outcome.error or "An unexpected error occurred."),
    }


def render_callback_page(outcome: LinkOutcome, *, provider_label: str) -> HTMLResponse:
    """Return the popup page for *outcome*; always HTTP 200."""
    label = html.escape(provider_label)
    if outcome.success:
        title = f"{label} Connection Successful"
        body = (
            '<div class="icon">&#9989;</div>'
            '<div class="title">Connection Successful</div>'
            f'<div class="message">Your {label} account has been connected successfully.</div>'
        )
    else:
        title = f"{label} Connection Failed"
        reason = html.escape(outcome.error or "An unexpected error occurred.")
        body = (
            '<div class="icon">&#10060;</div>'
            '<div class="title">Connection Failed</div>'
            f'<div class="message">{reason}</div>'
        )

    content = f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="utf-8">
    <title>{title}</title>
    <style>{_STYLE}    </style>
</head>
<body>
    <div class="container">
        {body}
        <div>Closing window...</div>
    </div>
    <script>
        if (window.opener) {{
            try {{
                window.opener.postMessage({_script_json(opener_message(outcome))}, {_script_json(outcome.origin or "*")});
            }} catch (err) {{
                console.error('Failed to send postMessage:', err);
            }}
        }}
        setTimeout(function () {{ window.close(); }}, {CLOSE_DELAY_MS});
    </script>
</body>
</html>
"""
    return HTMLResponse(content, headers={"Cache-Control": "no-store"})
