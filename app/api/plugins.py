"""
Plugin registry endpoints.
"""

from fastapi import APIRouter, Request
from loguru import logger

from app.models.schemas import OperationResponse, PluginDescriptor, PluginList, PluginRegistration

router = APIRouter()


@router.get("/", response_model=PluginList)
async def list_plugins(request: Request):
    """List registered plugins."""
    plugins = request.app.state.orchestrator.registry.list()
    return PluginList(plugins=plugins, total=len(plugins))


@router.post("/", response_model=PluginDescriptor, status_code=201)
def register_plugin(registration: PluginRegistration, request: Request):
    """
    Register a plugin module by path.

    Only modules inside the configured drop folder are accepted. The module
    is validated, copied into the plugin library and persisted. Other paths,
    duplicate names or file names are rejected with 400.
    """
    logger.info(f"Plugin registration requested: {registration.path}")
    return request.app.state.orchestrator.registry.register(registration.path)


@router.delete("/{name}", response_model=OperationResponse)
def remove_plugin(name: str, request: Request):
    """Unregister a plugin and delete its library copy."""
    orchestrator = request.app.state.orchestrator
    descriptor = orchestrator.registry.remove(name)
    orchestrator.invoker.evict(descriptor.path)
    return OperationResponse(status="removed", message=f"Plugin removed: {descriptor}")
