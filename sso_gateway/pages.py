"""
HTML pages served by the gateway.
"""

from html import escape

from fastapi.responses import HTMLResponse


def render_login_page(title: str, allowed_domain: str) -> HTMLResponse:
    """
    Render the login entry page.

    Args:
        title: Page title
        allowed_domain: Domain shown to users as the one permitted to sign in

    Returns:
        HTMLResponse with a single sign-in button pointing at /api/auth/sso
    """
    title = escape(title)
    allowed_domain = escape(allowed_domain)

    html_content = f"""
    <!DOCTYPE html>
    <html lang="en">
    <head>
        <meta charset="UTF-8">
        <meta name="viewport" content="width=device-width, initial-scale=1.0">
        <title>{title}</title>
        <style>
            * {{ margin: 0; padding: 0; box-sizing: border-box; }}
            body {{
                font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Helvetica, Arial, sans-serif;
                background: linear-gradient(135deg, #667eea 0%, #764ba2 100%);
                min-height: 100vh;
                display: flex;
                align-items: center;
                justify-content: center;
                padding: 20px;
            }}
            .container {{
                background: white;
                border-radius: 12px;
                padding: 40px;
                max-width: 420px;
                width: 100%;
                box-shadow: 0 10px 40px rgba(0,0,0,0.2);
                text-align: center;
            }}
            h1 {{
                color: #1f2937;
                font-size: 26px;
                margin-bottom: 12px;
            }}
            .hint {{
                color: #6b7280;
                font-size: 15px;
                margin-bottom: 32px;
            }}
            .button {{
                display: inline-block;
                background: #667eea;
                color: white;
                padding: 14px 32px;
                border-radius: 8px;
                text-decoration: none;
                font-weight: 600;
                font-size: 16px;
                transition: background 0.2s;
            }}
            .button:hover {{
                background: #5568d3;
            }}
        </style>
    </head>
    <body>
        <div class="container">
            <h1>{title}</h1>
            <p class="hint">Sign in with your @{allowed_domain} account.</p>
            <a href="/api/auth/sso" class="button">Sign in with Google</a>
        </div>
    </body>
    </html>
    """

    return HTMLResponse(content=html_content, status_code=200)
