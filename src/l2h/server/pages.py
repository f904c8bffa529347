"""Inline HTML for the landing, password challenge and tunnel pages."""

from __future__ import annotations

import html
import json

LANDING_PAGE = """<!DOCTYPE html>
<html>
<head>
    <title>L2H</title>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1">
</head>
<body>
    <h1>L2H</h1>
    <p>Nothing is bound at this address.</p>
</body>
</html>
"""

_PASSWORD_PAGE = """<!DOCTYPE html>
<html>
<head>
    <title>Password required</title>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1">
</head>
<body>
    <h1>/{path_html} requires a password</h1>
    <form id="authForm">
        <input type="password" id="password" placeholder="Password" required autofocus>
        <button type="submit">Continue</button>
    </form>
    <p id="error" hidden>Wrong password.</p>
    <script>
        document.getElementById('authForm').addEventListener('submit', async (e) => {{
            e.preventDefault();
            const response = await fetch('/api/auth', {{
                method: 'POST',
                credentials: 'same-origin',
                headers: {{'Content-Type': 'application/json'}},
                body: JSON.stringify({{
                    path: {path_js},
                    password: document.getElementById('password').value
                }})
            }});
            if (response.ok) {{
                window.location.reload();
            }} else {{
                document.getElementById('error').hidden = false;
            }}
        }});
    </script>
</body>
</html>
"""

_TUNNEL_PAGE = """<!DOCTYPE html>
<html>
<head>
    <title>Connecting</title>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1">
</head>
<body data-path="{path_html}" data-target="{target}">
    <h1>Connecting to port {target}</h1>
    <div id="status">Negotiating...</div>
    <script>
        (async () => {{
            const status = document.getElementById('status');
            const pc = new RTCPeerConnection();
            pc.createDataChannel('l2h');
            const offer = await pc.createOffer();
            await pc.setLocalDescription(offer);
            const response = await fetch('/api/webrtc/offer', {{
                method: 'POST',
                credentials: 'same-origin',
                headers: {{'Content-Type': 'application/json'}},
                body: JSON.stringify({{path: {path_js}, offer: offer.sdp}})
            }});
            if (!response.ok) {{
                status.textContent = 'Signaling failed (' + response.status + ')';
                return;
            }}
            const body = await response.json();
            status.textContent = 'Session ' + body.session_id;
        }})();
    </script>
</body>
</html>
"""


def _js_string(value: str) -> str:
    # json.dumps output is a valid JS literal; "</" is split so it cannot close the script tag.
    return json.dumps(value).replace("</", "<\\/")


def render_password_page(path: str) -> str:
    return _PASSWORD_PAGE.format(path_html=html.escape(path), path_js=_js_string(path))


def render_tunnel_page(path: str, target: int) -> str:
    return _TUNNEL_PAGE.format(
        path_html=html.escape(path),
        path_js=_js_string(path),
        target=int(target),
    )
