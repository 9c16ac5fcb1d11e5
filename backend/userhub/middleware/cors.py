from __future__ import annotations


def build_allowed_origins(*, app_web_url: str | None, cors_origins: str | None) -> list[str]:
    """The web app origin plus any comma-separated extras from CORS_ORIGINS."""
    allowed: set[str] = set()

    if app_web_url:
        allowed.add(str(app_web_url).rstrip("/"))

    for origin in [s.strip().rstrip("/") for s in str(cors_origins or "").split(",") if s.strip()]:
        allowed.add(origin)

    return sorted(allowed)
