"""Completion notifications returned by the OAuth callback."""

import html
import json

from fastapi.responses import HTMLResponse, RedirectResponse

from .flow import CallbackResult
from .urls import dashboard_url, error_url, frontend_origin, frontend_url

POPUP_TEMPLATE = """<!DOCTYPE html>
<html>
  <head><title>{title}</title></head>
  <body>
    <p>{title}. You can close this window.</p>
    <script>
      (function () {{
        var message = {message};
        var fallback = {fallback};
        if (window.opener && !window.opener.closed) {{
          window.opener.postMessage(message, {target_origin});
          window.close();
        }} else {{
          window.location.replace(fallback);
        }}
      }})();
    </script>
  </body>
</html>
"""


def _script_literal(value) -> str:
    return json.dumps(value).replace("<", "\\u003c")


def success_url(result: CallbackResult) -> str:
    if result.redirect_to:
        return frontend_url(result.redirect_to, account=str(result.account_id))
    return dashboard_url(str(result.account_id))


def redirect_notification(result: CallbackResult) -> RedirectResponse:
    return RedirectResponse(url=success_url(result), status_code=303)


def popup_notification(result: CallbackResult, display_name: str) -> HTMLResponse:
    """Page that hands the result to the opener window and closes itself."""
    message = {"type": f"{result.platform}-auth-success", "accountId": str(result.account_id)}
    content = POPUP_TEMPLATE.format(
        title=html.escape(f"{display_name} connected"),
        message=_script_literal(message),
        fallback=_script_literal(success_url(result)),
        target_origin=_script_literal(frontend_origin()),
    )
    return HTMLResponse(content=content)


def success_notification(result: CallbackResult, display_name: str):
    if result.mode == "popup":
        return popup_notification(result, display_name)
    return redirect_notification(result)


def error_redirect(message: str) -> RedirectResponse:
    return RedirectResponse(url=error_url(message), status_code=303)
