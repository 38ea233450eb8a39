"""Dependencies resolving the application's shared components."""
import httpx
from fastapi import Request

from ..config import Settings
from ..credentials.base import CredentialStore
from ..metrics import Metrics
from ..services.session_manager import SessionManager
from ..services.token_exchanger import TokenExchanger
from ..streaming.websocket import SessionStreamManager


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_credential_store(request: Request) -> CredentialStore:
    return request.app.state.credentials


def get_exchanger(request: Request) -> TokenExchanger:
    return request.app.state.exchanger


def get_session_manager(request: Request) -> SessionManager:
    return request.app.state.sessions


def get_stream_manager(request: Request) -> SessionStreamManager:
    return request.app.state.streams


def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.http_client


def get_metrics(request: Request) -> Metrics:
    return request.app.state.metrics
