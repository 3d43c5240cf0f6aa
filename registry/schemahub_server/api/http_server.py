"""
HTTP server implementation for SchemaHub.

This module exposes the registry as a JSON REST API on aiohttp.

Routes:
    POST   /v1/subjects/{subject}/versions                     register
    GET    /v1/subjects/{subject}/versions                     list versions
    GET    /v1/subjects/{subject}/versions/{version}           version or "latest"
    DELETE /v1/subjects/{subject}/versions/{version}           purge (inactive only)
    POST   /v1/subjects/{subject}/versions/{version}/deactivate
    POST   /v1/subjects/{subject}/versions/{version}/reactivate
    GET    /v1/subjects                                        list subjects
    GET    /v1/schemas/ids/{id}                                schema by ID
    PUT    /v1/config/{subject}                                set compatibility
    GET    /v1/config/{subject}                                get compatibility
    POST   /v1/compatibility/subjects/{subject}/versions/{version}
    GET    /v1/groups, GET /v1/groups/{group}
    PUT    /v1/groups/{group}/subjects/{subject}, DELETE same
    GET    /v1/health

Invariants:
    - Registry errors map to one fixed status per error code
    - Rejections (409) carry every violation, never a truncated list
    - JSON request/response format

How to change safely:
    - Add routes; never change the status of an existing error code
    - Keep the SDK client's status mapping in sync with ERROR_STATUS
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from typing import Any

from aiohttp import web

from ..config import HttpConfig
from ..errors import IncompatibleSchemaError, RegistryError

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    "INVALID_ARGUMENT": 400,
    "NOT_FOUND": 404,
    "INCOMPATIBLE_SCHEMA": 409,
    "PARSE_ERROR": 422,
    "STORAGE_CONFLICT": 500,
    "REGISTRY_UNAVAILABLE": 503,
}


def _bad_request(message: str) -> web.HTTPBadRequest:
    return web.HTTPBadRequest(
        text=json.dumps({"error": message, "error_code": "INVALID_ARGUMENT"}),
        content_type="application/json",
    )


def error_response(error: RegistryError) -> web.Response:
    """Convert a RegistryError to a JSON error response."""
    status = ERROR_STATUS.get(error.code, 500)
    body: dict[str, Any] = {
        "error": error.message,
        "error_code": error.code,
        "details": error.details,
    }
    if isinstance(error, IncompatibleSchemaError):
        body["reasons"] = [v.to_dict() for v in error.violations]
    if status >= 500:
        logger.error(f"Registry error: {error.message}", extra={"error_code": error.code})
    return web.json_response(body, status=status)


def create_http_app(servicer: Any, config: HttpConfig | None = None) -> web.Application:
    """Create an HTTP application for SchemaHub.

    Args:
        servicer: RegistryServicer instance
        config: HTTP server configuration

    Returns:
        aiohttp Application instance
    """
    config = config or HttpConfig()
    cors_origins = {o.strip() for o in config.cors_origins.split(",") if o.strip()}
    app = web.Application()

    app.router.add_get("/v1/subjects", lambda r: handle_list_subjects(r, servicer))
    app.router.add_post(
        "/v1/subjects/{subject}/versions", lambda r: handle_register(r, servicer)
    )
    app.router.add_get(
        "/v1/subjects/{subject}/versions", lambda r: handle_list_versions(r, servicer)
    )
    app.router.add_get(
        "/v1/subjects/{subject}/versions/{version}", lambda r: handle_get_version(r, servicer)
    )
    app.router.add_delete(
        "/v1/subjects/{subject}/versions/{version}", lambda r: handle_purge(r, servicer)
    )
    app.router.add_post(
        "/v1/subjects/{subject}/versions/{version}/deactivate",
        lambda r: handle_deactivate(r, servicer),
    )
    app.router.add_post(
        "/v1/subjects/{subject}/versions/{version}/reactivate",
        lambda r: handle_reactivate(r, servicer),
    )
    app.router.add_get("/v1/schemas/ids/{id}", lambda r: handle_get_schema(r, servicer))
    app.router.add_put("/v1/config/{subject}", lambda r: handle_set_config(r, servicer))
    app.router.add_get("/v1/config/{subject}", lambda r: handle_get_config(r, servicer))
    app.router.add_post(
        "/v1/compatibility/subjects/{subject}/versions/{version}",
        lambda r: handle_test_compatibility(r, servicer),
    )
    app.router.add_get("/v1/groups", lambda r: handle_list_groups(r, servicer))
    app.router.add_get("/v1/groups/{group}", lambda r: handle_get_group(r, servicer))
    app.router.add_put(
        "/v1/groups/{group}/subjects/{subject}", lambda r: handle_add_to_group(r, servicer)
    )
    app.router.add_delete(
        "/v1/groups/{group}/subjects/{subject}",
        lambda r: handle_remove_from_group(r, servicer),
    )
    app.router.add_get("/v1/health", lambda r: handle_health(r, servicer))

    # Add CORS middleware
    def add_cors_headers(request: web.Request, headers: Any) -> None:
        origin = request.headers.get("Origin", "*")
        if "*" in cors_origins or origin in cors_origins:
            headers["Access-Control-Allow-Origin"] = origin
        headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, DELETE, OPTIONS"
        headers["Access-Control-Allow-Headers"] = "Content-Type"

    @web.middleware
    async def cors_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
        if request.method == "OPTIONS":
            response = web.Response()
        else:
            try:
                response = await handler(request)
            except web.HTTPException as e:
                add_cors_headers(request, e.headers)
                raise

        add_cors_headers(request, response.headers)
        return response

    app.middlewares.append(cors_middleware)

    # Add error handler
    @web.middleware
    async def error_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
        try:
            return await handler(request)
        except web.HTTPException:
            raise
        except RegistryError as e:
            return error_response(e)
        except Exception as e:
            logger.error(f"HTTP handler error: {e}", exc_info=True)
            return web.json_response(
                {"error": str(e), "error_code": "INTERNAL"},
                status=500,
            )

    app.middlewares.insert(0, error_middleware)

    return app


async def _json_body(request: web.Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except json.JSONDecodeError:
        raise _bad_request("Invalid JSON body")
    if not isinstance(body, dict):
        raise _bad_request("JSON body must be an object")
    return body


async def handle_register(request: web.Request, servicer: Any) -> web.Response:
    """Handle POST /v1/subjects/{subject}/versions - Register a schema."""
    body = await _json_body(request)
    result = await servicer.register(request.match_info["subject"], body)
    return web.json_response(result, status=201 if result["created"] else 200)


async def handle_list_versions(request: web.Request, servicer: Any) -> web.Response:
    """Handle GET /v1/subjects/{subject}/versions - List versions."""
    include_inactive = request.query.get("include_inactive", "false").lower() == "true"
    result = await servicer.list_versions(request.match_info["subject"], include_inactive)
    return web.json_response(result)


async def handle_get_version(request: web.Request, servicer: Any) -> web.Response:
    """Handle GET /v1/subjects/{subject}/versions/{version} - Get one version."""
    result = await servicer.get_version(
        request.match_info["subject"], request.match_info["version"]
    )
    return web.json_response(result)


async def handle_purge(request: web.Request, servicer: Any) -> web.Response:
    """Handle DELETE /v1/subjects/{subject}/versions/{version} - Purge a version."""
    result = await servicer.purge(request.match_info["subject"], request.match_info["version"])
    return web.json_response(result)


async def handle_deactivate(request: web.Request, servicer: Any) -> web.Response:
    result = await servicer.deactivate(
        request.match_info["subject"], request.match_info["version"]
    )
    return web.json_response(result)


async def handle_reactivate(request: web.Request, servicer: Any) -> web.Response:
    result = await servicer.reactivate(
        request.match_info["subject"], request.match_info["version"]
    )
    return web.json_response(result)


async def handle_list_subjects(request: web.Request, servicer: Any) -> web.Response:
    return web.json_response(await servicer.list_subjects())


async def handle_get_schema(request: web.Request, servicer: Any) -> web.Response:
    """Handle GET /v1/schemas/ids/{id} - Get schema by ID."""
    try:
        schema_id = int(request.match_info["id"])
    except ValueError:
        raise _bad_request(f"Invalid schema id '{request.match_info['id']}'")
    return web.json_response(await servicer.get_schema(schema_id))


async def handle_set_config(request: web.Request, servicer: Any) -> web.Response:
    """Handle PUT /v1/config/{subject} - Set compatibility mode."""
    body = await _json_body(request)
    result = await servicer.set_compatibility(request.match_info["subject"], body)
    return web.json_response(result)


async def handle_get_config(request: web.Request, servicer: Any) -> web.Response:
    result = await servicer.get_compatibility(request.match_info["subject"])
    return web.json_response(result)


async def handle_test_compatibility(request: web.Request, servicer: Any) -> web.Response:
    """Handle POST /v1/compatibility/subjects/{subject}/versions/{version} - Dry run."""
    body = await _json_body(request)
    result = await servicer.test_compatibility(
        request.match_info["subject"], request.match_info["version"], body
    )
    return web.json_response(result)


async def handle_list_groups(request: web.Request, servicer: Any) -> web.Response:
    return web.json_response(await servicer.list_groups())


async def handle_get_group(request: web.Request, servicer: Any) -> web.Response:
    return web.json_response(await servicer.get_group(request.match_info["group"]))


async def handle_add_to_group(request: web.Request, servicer: Any) -> web.Response:
    result = await servicer.add_to_group(
        request.match_info["group"], request.match_info["subject"]
    )
    return web.json_response(result)


async def handle_remove_from_group(request: web.Request, servicer: Any) -> web.Response:
    result = await servicer.remove_from_group(
        request.match_info["group"], request.match_info["subject"]
    )
    return web.json_response(result)


async def handle_health(request: web.Request, servicer: Any) -> web.Response:
    """Handle GET /v1/health - Health check."""
    result = await servicer.health()
    status = 200 if result.get("healthy") else 503
    return web.json_response(result, status=status)

