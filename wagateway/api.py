"""
REST API for the WhatsApp gateway.

Routes follow the Evolution API shape expected by n8n: instance status and
pairing, text sending and webhook configuration for the single configured
instance. Handlers only read controller state or request actions from it.
"""

import logging
import time
from typing import Optional, Union

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import BaseModel

from wagateway.config import GatewayConfig
from wagateway.exceptions import NotConnectedError, SessionClientError
from wagateway.lifecycle import LifecycleController
from wagateway.notifier import WebhookNotifier, iso_timestamp
from wagateway.qr import qr_data_url, render_qr_page
from wagateway.security import require_api_key

logger = logging.getLogger(__name__)

router = APIRouter()
authenticated = [Depends(require_api_key)]


class SendTextRequest(BaseModel):
    remoteJid: Union[str, int]
    message: str


class SendTextCompatRequest(BaseModel):
    number: Union[str, int]
    text: str


class MessagesApiRequest(BaseModel):
    remoteJid: Union[str, int]
    messageText: str
    instanceName: Optional[str] = None


class CreateInstanceRequest(BaseModel):
    instanceName: Optional[str] = None
    token: Optional[str] = None
    qrcode: Optional[bool] = None


class WebhookConfigRequest(BaseModel):
    url: Optional[str] = None
    enabled: Optional[bool] = None


def get_config(request: Request) -> GatewayConfig:
    return request.app.state.config


def get_controller(request: Request) -> LifecycleController:
    return request.app.state.controller


def get_notifier(request: Request) -> WebhookNotifier:
    return request.app.state.notifier


def _check_instance(instance_name: str, config: GatewayConfig) -> None:
    if instance_name != config.instance_name:
        raise HTTPException(status_code=404, detail="Instance not found")


def _instance_record(config: GatewayConfig, controller: LifecycleController) -> dict:
    return {
        "instanceName": config.instance_name,
        "status": controller.current_state().value,
        "connected": controller.is_connected,
        "serverUrl": config.public_url,
    }


async def _send(controller: LifecycleController, recipient: Union[str, int], text: str) -> str:
    """Send through the controller, mapping failures to HTTP errors."""
    try:
        return await controller.send_text(str(recipient), text)
    except NotConnectedError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SessionClientError as e:
        logger.error(f"Failed to send message to {recipient}: {e.message}")
        raise HTTPException(status_code=500, detail=e.message)


# ============================================================================
# Service status
# ============================================================================


@router.get("/")
async def root(request: Request):
    config = get_config(request)
    controller = get_controller(request)
    return {
        "status": "online",
        "instance": config.instance_name,
        "connection": controller.current_state().value,
        "connected": controller.is_connected,
        "timestamp": iso_timestamp(),
    }


@router.get("/health")
async def health(request: Request):
    return {
        "status": "ok",
        "uptime": round(time.monotonic() - request.app.state.started_at, 3),
    }


# ============================================================================
# Instance management
# ============================================================================


@router.get("/instance", dependencies=authenticated)
async def list_instances(request: Request):
    return [_instance_record(get_config(request), get_controller(request))]


@router.get("/instance/status", dependencies=authenticated)
async def instance_status(request: Request):
    config = get_config(request)
    controller = get_controller(request)
    return {
        "instance": config.instance_name,
        "status": controller.current_state().value,
        "connected": controller.is_connected,
    }


@router.get("/instance/qr", dependencies=authenticated)
async def instance_qr(request: Request):
    controller = get_controller(request)

    if controller.is_connected:
        return {"error": False, "message": "Instance already connected", "connected": True}

    code = controller.current_pairing_artifact()
    if not code:
        return {"error": True, "message": "QR Code not available. Try reconnecting."}

    try:
        qrcode = qr_data_url(code)
    except Exception as e:
        logger.error(f"Failed to render QR code: {e}")
        raise HTTPException(status_code=500, detail=str(e))
    return {"error": False, "qrcode": qrcode, "message": "QR Code generated"}


@router.get("/instance/{instance_name}", dependencies=authenticated)
async def get_instance(instance_name: str, request: Request):
    config = get_config(request)
    _check_instance(instance_name, config)
    return _instance_record(config, get_controller(request))


@router.post("/instance/create", dependencies=authenticated)
async def create_instance(request: Request, body: Optional[CreateInstanceRequest] = None):
    config = get_config(request)
    controller = get_controller(request)

    if body is None or body.instanceName != config.instance_name:
        raise HTTPException(status_code=400, detail="Instance name must match configured instance")

    controller.request_connect()
    return {
        "error": False,
        "message": "Instance created successfully",
        "instance": {
            "instanceName": config.instance_name,
            "status": controller.current_state().value,
        },
    }


@router.post("/instance/connect", dependencies=authenticated)
async def connect_instance(request: Request):
    started = get_controller(request).request_connect()
    return {
        "error": False,
        "message": "Connection initiated" if started else "Connection already active",
    }


@router.get("/qr", response_class=HTMLResponse)
async def qr_page(request: Request):
    controller = get_controller(request)
    state = controller.current_state()
    code = controller.current_pairing_artifact()

    try:
        data_url = qr_data_url(code) if code else None
    except Exception as e:
        logger.error(f"Failed to render QR page: {e}")
        return HTMLResponse(render_qr_page(state, error="Could not render the QR code"))
    return HTMLResponse(render_qr_page(state, data_url))


# ============================================================================
# Messaging
# ============================================================================


@router.post("/message/text", dependencies=authenticated)
async def send_message_text(body: SendTextRequest, request: Request):
    message_id = await _send(get_controller(request), body.remoteJid, body.message)
    return {
        "error": False,
        "message": "Message sent successfully",
        "messageId": message_id,
    }


@router.post("/sendText/{instance_name}", dependencies=authenticated)
async def send_text_compat(instance_name: str, body: SendTextCompatRequest, request: Request):
    _check_instance(instance_name, get_config(request))
    message_id = await _send(get_controller(request), body.number, body.text)
    return {
        "error": False,
        "message": "Message sent successfully",
        "messageId": message_id,
        "timestamp": iso_timestamp(),
    }


@router.post("/messages-api", dependencies=authenticated)
async def messages_api(body: MessagesApiRequest, request: Request):
    config = get_config(request)
    if body.instanceName:
        _check_instance(body.instanceName, config)
    message_id = await _send(get_controller(request), body.remoteJid, body.messageText)
    return {
        "error": False,
        "message": "Message sent successfully",
        "messageId": message_id,
        "instance": config.instance_name,
        "timestamp": iso_timestamp(),
    }


# ============================================================================
# Media (retrieval is not implemented; empty payloads keep clients working)
# ============================================================================


@router.get("/message/media/{message_id}", dependencies=authenticated)
async def get_media(message_id: str):
    return {
        "error": False,
        "data": {
            "base64": "",
            "mimetype": "application/octet-stream",
            "filename": "media",
        },
    }


@router.get("/chat-api/get-media-base64/{instance_name}/{message_id}", dependencies=authenticated)
async def get_media_base64(instance_name: str, message_id: str, request: Request):
    _check_instance(instance_name, get_config(request))
    return {
        "error": False,
        "data": {
            "base64": "",
            "mimetype": "application/octet-stream",
            "filename": "media",
            "messageId": message_id,
        },
    }


# ============================================================================
# Webhook configuration
# ============================================================================


@router.post("/webhook/{instance_name}", dependencies=authenticated)
async def configure_webhook(instance_name: str, body: WebhookConfigRequest, request: Request):
    _check_instance(instance_name, get_config(request))

    try:
        target = get_notifier(request).configure(url=body.url or None, enabled=body.enabled)
    except ValueError as e:
        return JSONResponse(
            status_code=400,
            content={"error": True, "message": f"Invalid webhook URL: {e}"},
        )

    return {
        "error": False,
        "message": "Webhook configured successfully",
        "webhook": target.to_dict(),
    }
