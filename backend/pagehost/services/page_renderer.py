"""Minimal tenant page rendering for the serving path."""

from html import escape

from pagehost.models.landing_page import LandingPage


def render_landing_page(page: LandingPage, host: str) -> str:
    """Return the page's stored HTML, or a plain page linking to its offer."""
    if page.html_content:
        return page.html_content

    title = escape(page.name)
    link = escape(page.affiliate_url, quote=True)
    return (
        "<!DOCTYPE html>\n"
        '<html lang="en">\n'
        "<head>\n"
        '<meta charset="utf-8">\n'
        '<meta name="viewport" content="width=device-width, initial-scale=1">\n'
        f"<title>{title}</title>\n"
        "</head>\n"
        "<body>\n"
        f"<h1>{title}</h1>\n"
        f'<p><a href="{link}" rel="nofollow noopener">Continue</a></p>\n'
        f"<footer>{escape(host)}</footer>\n"
        "</body>\n"
        "</html>\n"
    )
