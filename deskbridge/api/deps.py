"""Shared route dependencies"""
from fastapi import Request

from deskbridge.services.bridge import BridgeRuntime


def get_runtime(request: Request) -> BridgeRuntime:
    """Runtime built at startup and kept on the application state"""
    return request.app.state.runtime
