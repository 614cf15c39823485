"""API dependencies resolving services from the application container"""

from fastapi import Request

from src.container import ServiceContainer
from src.services.orchestrator import ProcessingOrchestrator
from src.services.photo_service import PhotoService
from src.services.upload_service import UploadPipeline


def get_container(request: Request) -> ServiceContainer:
    """Container built at startup and stored on app.state"""
    return request.app.state.container


def get_upload_pipeline(request: Request) -> UploadPipeline:
    return get_container(request).upload_pipeline


def get_orchestrator(request: Request) -> ProcessingOrchestrator:
    return get_container(request).orchestrator


def get_photo_service(request: Request) -> PhotoService:
    return get_container(request).photo_service
