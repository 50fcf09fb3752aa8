"""HTML pages served by the gateway: home, health status and the OAuth login form."""

from datetime import datetime, timezone
from html import escape
from typing import Iterable, Optional

from models import MCPTool

BASE_STYLE = """
    * { box-sizing: border-box; margin: 0; padding: 0; }
    body {
      font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, 'Noto Sans KR', sans-serif;
      background: linear-gradient(135deg, #1a1a2e 0%, #16213e 50%, #0f3460 100%);
      min-height: 100vh;
      color: #e8e8e8;
      line-height: 1.6;
    }
    .container { max-width: 900px; margin: 0 auto; padding: 40px 20px; }
    h1 { font-size: 2.2rem; color: #fff; margin-bottom: 8px; }
    .card {
      background: rgba(255, 255, 255, 0.05);
      border: 1px solid rgba(255, 255, 255, 0.1);
      border-radius: 16px;
      padding: 28px;
      margin-bottom: 24px;
    }
    .card-title { font-size: 1.25rem; color: #fff; margin-bottom: 16px; }
    code { font-family: 'SF Mono', 'Monaco', 'Menlo', monospace; color: #667eea; }
    .muted { color: #a0a0a0; }
    .error {
      background: rgba(255, 71, 87, 0.15);
      border: 1px solid rgba(255, 71, 87, 0.4);
      color: #ff6b81;
      padding: 12px;
      border-radius: 8px;
      margin: 16px 0;
    }
"""


def _page(title: str, body: str, extra_head: str = "") -> str:
    return f"""<!DOCTYPE html>
<html lang="ko">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{escape(title)}</title>{extra_head}
  <style>{BASE_STYLE}</style>
</head>
<body>
{body}
</body>
</html>"""


def render_home_page(server_url: str, tools: Iterable[MCPTool], version: str) -> str:
    url = escape(server_url)
    oauth_endpoints = [
        ("Protected Resource Metadata", f"{url}/.well-known/oauth-protected-resource"),
        ("Authorization Server Metadata", f"{url}/.well-known/oauth-authorization-server"),
        ("Authorization Endpoint", f"{url}/oauth/authorize"),
        ("Token Endpoint", f"{url}/oauth/token"),
    ]
    api_endpoints = [
        ("MCP Endpoint", f"{url}/mcp"),
        ("Health Check", f"{url}/health"),
    ]

    def endpoint_list(items):
        return "\n".join(f"        <li>{name}: <code>{href}</code></li>" for name, href in items)

    tool_items = "\n".join(
        f"        <li><code>{escape(t.name)}</code> <span class=\"muted\">{escape(t.description)}</span></li>"
        for t in tools
    )

    body = f"""  <div class="container">
    <header class="card">
      <h1>Gamja MCP Server</h1>
      <p class="muted">v{escape(version)} · jcg-gamza 교육 콘텐츠를 위한 Model Context Protocol 서버</p>
      <p>서버가 정상 작동 중입니다</p>
    </header>
    <section class="card">
      <h2 class="card-title">OAuth 2.1 엔드포인트</h2>
      <ul>
{endpoint_list(oauth_endpoints)}
      </ul>
    </section>
    <section class="card">
      <h2 class="card-title">API 엔드포인트</h2>
      <ul>
{endpoint_list(api_endpoints)}
      </ul>
    </section>
    <section class="card">
      <h2 class="card-title">사용 가능한 도구</h2>
      <ul>
{tool_items}
      </ul>
    </section>
    <section class="card">
      <p>인증 방법: MCP 클라이언트의 Authenticate 버튼을 사용하세요</p>
      <p class="muted">OAuth 2.1 + PKCE 방식으로 안전하게 인증됩니다</p>
    </section>
  </div>"""
    return _page("Gamja MCP Server", body)


def render_health_page(version: str, protocol_version: str, tool_count: int) -> str:
    timestamp = datetime.now(timezone.utc).isoformat()
    body = f"""  <div class="container">
    <div class="card">
      <h1>Gamja MCP Server</h1>
      <p class="muted">Version {escape(version)}</p>
      <p>Server Status: <strong>Healthy</strong></p>
      <ul>
        <li>Protocol: MCP {escape(protocol_version)}</li>
        <li>Auth: OAuth 2.1</li>
        <li>Tools: {tool_count} Available</li>
      </ul>
      <p class="muted">Last checked: {timestamp}</p>
      <p class="muted">This page auto-refreshes every 30 seconds</p>
      <p><a href="/">&larr; Back to Home</a></p>
    </div>
  </div>"""
    return _page("Gamja MCP - Health Status", body, '\n  <meta http-equiv="refresh" content="30">')


def render_login_page(
    client_id: str,
    redirect_uri: str,
    state: str,
    scope: str,
    code_challenge: str,
    code_challenge_method: str,
    error: Optional[str] = None,
) -> str:
    hidden = {
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "state": state,
        "scope": scope,
        "code_challenge": code_challenge,
        "code_challenge_method": code_challenge_method,
    }
    hidden_fields = "\n".join(
        f'      <input type="hidden" name="{name}" value="{escape(value or "")}">'
        for name, value in hidden.items()
    )
    error_block = f'\n    <div class="error">{escape(error)}</div>' if error else ""

    body = f"""  <div class="container">
    <div class="card">
    <h1>Gamja MCP</h1>
    <p class="muted">MCP 클라이언트가 접근을 요청합니다</p>{error_block}
    <form method="POST">
{hidden_fields}
      <p>
        <label for="username">아이디</label>
        <input type="text" id="username" name="username" required autocomplete="username">
      </p>
      <p>
        <label for="password">패스워드</label>
        <input type="password" id="password" name="password" required autocomplete="current-password">
      </p>
      <button type="submit">로그인 및 승인</button>
    </form>
    <p class="muted">
      <strong>클라이언트:</strong> {escape(client_id or "")}<br>
      <strong>권한:</strong> {escape(scope or "mcp:read")}
    </p>
    </div>
  </div>"""
    return _page("Gamja MCP - 로그인", body)
