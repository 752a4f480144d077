"""OpenAPI metadata and customization utilities.

Enriches the generated OpenAPI schema with:
- Tags metadata
- API Key security scheme (``X-API-Key``) on internal endpoints
- Cookie security scheme on session endpoints

Public endpoints (health, verification, signup) carry ``security: []``.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

INTERNAL_PREFIX = "/v1/internal/"
COOKIE_PATHS = ("/v1/me/status", "/v1/auth/logout")

TAGS = [
    {"name": "Verification", "description": "Create and check one-time codes."},
    {"name": "Auth", "description": "Signup, resend and email verification flows."},
    {"name": "Sessions", "description": "Server-side sessions and status."},
    {"name": "Users", "description": "Propagation of durable user state to sessions."},
    {"name": "Health", "description": "Liveness and readiness checks."},
]


def _security_for(path: str) -> list[dict[str, list]]:
    if path.startswith(INTERNAL_PREFIX):
        return [{"ApiKeyAuth": []}]
    if path in COOKIE_PATHS:
        return [{"SessionCookie": []}]
    return []


def apply_openapi_customizations(app: FastAPI, cookie_name: str = "session") -> None:
    """Patch FastAPI's OpenAPI generation to add tags and security schemes."""

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        schema = original_openapi()

        components = schema.setdefault("components", {})
        security_schemes = components.setdefault("securitySchemes", {})
        security_schemes.setdefault(
            "ApiKeyAuth",
            {
                "type": "apiKey",
                "in": "header",
                "name": "X-API-Key",
                "description": "Shared key for trusted backend collaborators.",
            },
        )
        security_schemes.setdefault(
            "SessionCookie",
            {"type": "apiKey", "in": "cookie", "name": cookie_name},
        )

        tags = schema.setdefault("tags", [])
        existing_tag_names = {t.get("name") for t in tags}
        for tag in TAGS:
            if tag["name"] not in existing_tag_names:
                tags.append(tag)

        for path, methods in schema.get("paths", {}).items():
            for method_obj in methods.values():
                if isinstance(method_obj, dict):
                    method_obj["security"] = _security_for(path)

        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
