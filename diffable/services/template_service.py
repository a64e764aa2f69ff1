"""Script text served to the browser client and embedded into pages."""

from __future__ import annotations

from diffable.delta.codec import quote_js

CODE_BOOTSTRAP = "window['diffable']['bootstrap']('{resource_hash}', {code}, '{version}');"
DELTA_BOOTSTRAP = "window['diffable']['applyAndExecute']('{resource_hash}', {payload});"


def render_code_bootstrap(resource_hash: str, content: str, version: str) -> str:
    """Wrap full resource content so the client caches and executes it."""
    return CODE_BOOTSTRAP.format(
        resource_hash=resource_hash, code=quote_js(content), version=version
    )


def render_delta_bootstrap(resource_hash: str, payload: str) -> str:
    """Wrap a diff payload (or a full-content fallback) for the client to apply."""
    return DELTA_BOOTSTRAP.format(resource_hash=resource_hash, payload=payload)


def render_resource_tag(resource_hash: str, current_version: str, url_prefix: str) -> str:
    """HTML snippet registering a managed resource and its current version with the client."""
    prefix = url_prefix.rstrip("/")
    entry = f"window['diffable']['{resource_hash}']"
    lines = [
        "<script type='text/javascript'>",
        f"{entry}={{}};",
        f"{entry}['cv'] = '{current_version}';",
        f"{entry}['diff_url'] = '{prefix}/';",
        f"window['diffable']['addResource']('{prefix}/{resource_hash}');",
        "</script>",
    ]
    return "\n".join(lines) + "\n"
