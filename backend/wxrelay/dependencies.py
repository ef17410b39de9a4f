"""
Service container and FastAPI dependencies.

The bridge builds one BridgeServices at startup (see main.lifespan) and keeps
it on ``app.state.services``; the runtime webhook service keeps its
RuntimeServices on ``app.state.runtime``. Routes ask for the pieces they need through
the getters below, so tests can hand the app prebuilt doubles instead.
"""

from dataclasses import dataclass

import httpx
from fastapi import Request

from wxrelay.config import RuntimeSettings, Settings
from wxrelay.services.agent import AgentRuntime
from wxrelay.services.binding_store import BindingStore
from wxrelay.services.delivery import WeChatDelivery
from wxrelay.services.dispatcher import ForwardingDispatcher
from wxrelay.services.token_manager import PlatformTokenManager


@dataclass
class BridgeServices:
    settings: Settings
    bindings: BindingStore
    tokens: PlatformTokenManager
    dispatcher: ForwardingDispatcher
    delivery: WeChatDelivery


def get_services(request: Request) -> BridgeServices:
    return request.app.state.services


def get_settings(request: Request) -> Settings:
    return get_services(request).settings


def get_binding_store(request: Request) -> BindingStore:
    return get_services(request).bindings


def get_dispatcher(request: Request) -> ForwardingDispatcher:
    return get_services(request).dispatcher


def get_delivery(request: Request) -> WeChatDelivery:
    return get_services(request).delivery


@dataclass
class RuntimeServices:
    settings: RuntimeSettings
    agent: AgentRuntime
    http_client: httpx.AsyncClient


def get_runtime_services(request: Request) -> RuntimeServices:
    return request.app.state.runtime


def get_runtime_settings(request: Request) -> RuntimeSettings:
    return get_runtime_services(request).settings
