# Copyright Red Hat
#
# stratis_volume/server.py - Volume plugin protocol handler
#
# This file is part of the podman-volume-stratis project.
#
# SPDX-License-Identifier: Apache-2.0
"""
HTTP handler for the volume plugin protocol.

Requests and responses are JSON documents posted to ``/Plugin.Activate``
and ``/VolumeDriver.*`` endpoints on a Unix domain socket.
"""
from typing import Dict, Optional
import json
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError
from starlette.concurrency import run_in_threadpool
import uvicorn

from stratis_volume import (
    STRATIS_VOLUME_SUBSYSTEM_SERVER,
    VolumeError,
    __version__,
)

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_server(msg, *args, **kwargs):
    """A wrapper for server subsystem debug logs."""
    _log.debug(
        msg, *args, extra={"subsystem": STRATIS_VOLUME_SUBSYSTEM_SERVER}, **kwargs
    )


#: Media type used by the volume plugin protocol.
PLUGIN_MEDIA_TYPE = "application/vnd.docker.plugins.v1+json"

#: Plugin subsystems implemented by this handler.
IMPLEMENTS = ["VolumeDriver"]


class PluginResponse(JSONResponse):
    """
    JSON response with the plugin protocol media type.
    """

    media_type = PLUGIN_MEDIA_TYPE


class VolumeRequest(BaseModel):
    """
    A volume plugin request. Unused fields are left at their defaults.
    """

    Name: str = ""
    Opts: Optional[Dict[str, str]] = None
    ID: str = ""


class PluginRequestError(VolumeError):
    """
    A request body could not be decoded.
    """


async def _read_request(request: Request) -> VolumeRequest:
    """
    Decode the JSON body of ``request``. An empty body is an empty request.

    :raises: ``PluginRequestError`` if the body is not a valid request.
    """
    body = await request.body()
    if not body.strip():
        return VolumeRequest()
    try:
        return VolumeRequest.model_validate(json.loads(body))
    except (ValueError, ValidationError) as err:
        raise PluginRequestError(f"Invalid request: {err}") from err


def register_exception_handlers(app: FastAPI):
    """Register handlers returning errors in the plugin protocol format."""

    @app.exception_handler(VolumeError)
    async def volume_error_handler(request: Request, exc: VolumeError):
        _log_error("%s failed: %s", request.url.path.lstrip("/"), exc)
        return PluginResponse(status_code=500, content={"Err": str(exc)})


def register_routes(app: FastAPI, driver):
    """
    Register the plugin protocol endpoints for ``driver``.
    """

    @app.post("/Plugin.Activate")
    async def activate():
        _log_debug_server("Plugin activated")
        return PluginResponse(content={"Implements": IMPLEMENTS})

    @app.post("/VolumeDriver.Create")
    async def create(request: Request):
        req = await _read_request(request)
        _log_debug_server("Create request: %s", req)
        await run_in_threadpool(driver.create, req.Name, req.Opts or {})
        return PluginResponse(content={})

    @app.post("/VolumeDriver.Remove")
    async def remove(request: Request):
        req = await _read_request(request)
        _log_debug_server("Remove request: %s", req)
        await run_in_threadpool(driver.remove, req.Name)
        return PluginResponse(content={})

    @app.post("/VolumeDriver.Mount")
    async def mount(request: Request):
        req = await _read_request(request)
        _log_debug_server("Mount request: %s", req)
        mountpoint = await run_in_threadpool(driver.mount, req.Name, req.ID)
        return PluginResponse(content={"Mountpoint": mountpoint})

    @app.post("/VolumeDriver.Unmount")
    async def unmount(request: Request):
        req = await _read_request(request)
        _log_debug_server("Unmount request: %s", req)
        await run_in_threadpool(driver.unmount, req.Name, req.ID)
        return PluginResponse(content={})

    @app.post("/VolumeDriver.Path")
    async def path(request: Request):
        req = await _read_request(request)
        _log_debug_server("Path request: %s", req)
        mountpoint = await run_in_threadpool(driver.path, req.Name)
        return PluginResponse(content={"Mountpoint": mountpoint})

    @app.post("/VolumeDriver.Get")
    async def get(request: Request):
        req = await _read_request(request)
        _log_debug_server("Get request: %s", req)
        volume = await run_in_threadpool(driver.get, req.Name)
        return PluginResponse(content={"Volume": volume.to_dict()})

    @app.post("/VolumeDriver.List")
    async def list_volumes():
        _log_debug_server("List request")
        volumes = await run_in_threadpool(driver.list)
        return PluginResponse(content={"Volumes": [vol.to_dict() for vol in volumes]})

    @app.post("/VolumeDriver.Capabilities")
    async def capabilities():
        _log_debug_server("Capabilities request")
        return PluginResponse(content={"Capabilities": driver.capabilities()})


def create_app(driver) -> FastAPI:
    """
    Create the plugin protocol application for ``driver``.

    :param driver: The ``VolumeDriver`` serving requests.
    :returns: A configured ``FastAPI`` application.
    """
    app = FastAPI(
        title="podman-volume-stratis",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    register_exception_handlers(app)
    register_routes(app, driver)
    return app


def serve(app: FastAPI, socket_path: str):
    """
    Serve ``app`` on the Unix domain socket at ``socket_path`` until the
    server is stopped.
    """
    _log_info("Listening on socket %s", socket_path)
    uvicorn.run(app, uds=socket_path, log_config=None, access_log=False)


__all__ = [
    "PLUGIN_MEDIA_TYPE",
    "VolumeRequest",
    "create_app",
    "serve",
]
