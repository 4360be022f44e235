import html
import json
from string import Template
from urllib.parse import urlsplit

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse

from altcha_gate.config import settings
from altcha_gate.middleware.client_identity import get_host_domain, strip_port

router = APIRouter()

WIDGET_SCRIPT = "https://cdn.jsdelivr.net/npm/altcha@latest/dist/altcha.min.js"

CHALLENGE_PAGE = Template("""<!DOCTYPE html>
<html lang="en">
<head>
    <title>Verification Required - $site_name</title>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1">
    <script type="module" src="$widget_script"></script>
    <style>
        body {
            font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
            max-width: 600px;
            margin: 0 auto;
            padding: 20px;
            background: #f5f5f5;
            line-height: 1.6;
        }
        .container {
            background: white;
            padding: 40px;
            border-radius: 8px;
            box-shadow: 0 2px 10px rgba(0,0,0,0.1);
            text-align: center;
            margin-top: 50px;
        }
        h1 { color: #e87722; font-size: 2em; margin-bottom: 30px; }
        h2 { color: #333; margin-bottom: 10px; }
        p { color: #666; margin-bottom: 30px; }
        altcha-widget { margin: 20px 0; display: block; }
        button {
            background: #e87722;
            color: white;
            border: none;
            padding: 12px 24px;
            border-radius: 4px;
            cursor: pointer;
            font-size: 16px;
            margin-top: 15px;
            min-width: 200px;
        }
        button:disabled { background: #ccc; cursor: not-allowed; }
        .info {
            color: #666;
            font-size: 14px;
            margin-top: 20px;
            padding: 15px;
            background: #f9f9f9;
            border-radius: 4px;
        }
    </style>
</head>
<body>
    <div class="container">
        <h1>$site_name</h1>
        <h2>Security Verification Required</h2>
        <p>Please complete the verification below to continue to <strong>$host</strong></p>
        <form id="challenge-form">
            <altcha-widget challengeurl="/api/challenge" spamfilter="false"></altcha-widget>
            <button type="submit" id="submit-btn" disabled>Continue to Site</button>
        </form>
        <div class="info">
            This check protects $site_name from automated abuse.
            <br><small>Powered by ALTCHA - privacy-friendly proof of work</small>
        </div>
    </div>
    <script>
        const returnTo = $return_to_json;
        const form = document.getElementById('challenge-form');
        const submitBtn = document.getElementById('submit-btn');
        const widget = document.querySelector('altcha-widget');

        widget.addEventListener('statechange', (ev) => {
            switch (ev.detail.state) {
                case 'verified':
                    submitBtn.disabled = false;
                    submitBtn.textContent = 'Continue to Site';
                    break;
                case 'error':
                    submitBtn.disabled = true;
                    submitBtn.textContent = 'Verification Failed - Try Again';
                    setTimeout(() => widget.reset(), 2000);
                    break;
                case 'solving':
                case 'verifying':
                    submitBtn.disabled = true;
                    submitBtn.textContent = 'Solving Challenge...';
                    break;
                default:
                    submitBtn.disabled = true;
                    submitBtn.textContent = 'Complete Verification';
            }
        });

        form.addEventListener('submit', async (e) => {
            e.preventDefault();
            const payload = new FormData(form).get('altcha') || widget.value;
            if (!payload) {
                alert('Please complete the verification first.');
                return;
            }
            try {
                const response = await fetch('/api/verify', {
                    method: 'POST',
                    headers: {'Content-Type': 'application/json'},
                    body: JSON.stringify({altcha: payload}),
                });
                if (response.ok) {
                    window.location.href = returnTo;
                    return;
                }
                alert('Verification failed. Please try again.');
            } catch (error) {
                alert('Error occurred. Please try again.');
            }
            widget.reset();
            submitBtn.disabled = true;
        });
    </script>
</body>
</html>
""")


def safe_return_to(return_to: str | None, host: str, domain: str) -> str:
    """
    Keep ``return_to`` only if it points back at this host.

    Relative paths and http(s) URLs for ``domain`` pass; anything else falls
    back to the site root so the page cannot be used as an open redirect.
    """
    default = f"https://{host}/"
    if not return_to:
        return default

    # Browsers drop tabs and newlines, which would turn "/\t/host" into "//host"
    if any(ch.isspace() or not ch.isprintable() for ch in return_to):
        return default

    if return_to.startswith("/") and not return_to.startswith(("//", "/\\")):
        return return_to

    try:
        parts = urlsplit(return_to)
    except ValueError:
        return default

    target_host = strip_port(parts.netloc.rpartition("@")[2]).lower()
    if parts.scheme in ("http", "https") and target_host == domain:
        return return_to
    return default


def script_json(value: str) -> str:
    """JSON-encode a string for an inline <script>, without a way to close the tag."""
    return json.dumps(value).replace("<", "\\u003c").replace(">", "\\u003e")


@router.get("/", response_class=HTMLResponse)
async def challenge_page(request: Request, return_to: str | None = None):
    """Serve the page hosting the ALTCHA widget."""
    domain = get_host_domain(request)
    host = request.headers.get("host", domain)
    target = safe_return_to(return_to, host, domain)

    return CHALLENGE_PAGE.substitute(
        site_name=html.escape(settings.site_name),
        widget_script=WIDGET_SCRIPT,
        host=html.escape(host),
        return_to_json=script_json(target),
    )
