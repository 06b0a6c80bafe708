"""OpenAPI customization.

Adds the ``X-API-Key`` security scheme to operational routes only (admission
and health stay open) and attaches tag descriptions.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

_TAGS = [
    {"name": "Admission", "description": "Admit or reject callers under a named policy."},
    {"name": "Rate Limits", "description": "Policy table, quota introspection and access management."},
    {"name": "Health", "description": "Liveness checks."},
]

_PROTECTED_PREFIX = "/v1/rate-limits"


def apply_openapi_customizations(app: FastAPI) -> None:
    """Patch FastAPI's OpenAPI generation to add tags and the API key scheme."""

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        schema = original_openapi()

        security_schemes = schema.setdefault("components", {}).setdefault("securitySchemes", {})
        security_schemes.setdefault(
            "ApiKeyAuth",
            {
                "type": "apiKey",
                "in": "header",
                "name": "X-API-Key",
                "description": "Provide your API key via the X-API-Key header.",
            },
        )

        tags = schema.setdefault("tags", [])
        existing = {t.get("name") for t in tags}
        tags.extend(tag for tag in _TAGS if tag["name"] not in existing)

        for path, methods in schema.get("paths", {}).items():
            if not path.startswith(_PROTECTED_PREFIX):
                continue
            for method_obj in methods.values():
                if isinstance(method_obj, dict):
                    method_obj.setdefault("security", [{"ApiKeyAuth": []}])

        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
