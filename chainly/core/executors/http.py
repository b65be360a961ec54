"""
HTTP executors

Nodes whose effect is a plain HTTP call, made with httpx:
- HTTP_REQUEST: arbitrary request, response stored in the context
- DISCORD: message through a Discord webhook
- EMAIL: message through the Resend API

Status classification shared by all three: 429 and 5xx are transient (left
to the step runner's retries), other 4xx are permanent.
"""

import json
import logging
from typing import Any, Dict, Optional

import httpx

from ..context import Context, with_variable
from ..exceptions import NonRetriableNodeError, TransientNodeError
from ..nodes import NodeType
from .base import NodeCall, NodeExecutor

logger = logging.getLogger(__name__)

HTTP_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE")
BODY_METHODS = ("POST", "PUT", "PATCH")

DISCORD_MAX_CONTENT = 2000
RESEND_API_URL = "https://api.resend.com/emails"


def raise_for_status(label: str, response: httpx.Response, node_id: str, detail: Optional[str] = None) -> None:
    status = response.status_code
    if status < 400:
        return
    message = f"{label} Node: Request failed with status {status}"
    if detail:
        message += f". {detail}"
    if status == 429 or status >= 500:
        raise TransientNodeError(message, node_id=node_id, status_code=status)
    raise NonRetriableNodeError(message, node_id=node_id, status_code=status)


def _response_data(response: httpx.Response) -> Any:
    if "application/json" in response.headers.get("content-type", ""):
        try:
            return response.json()
        except ValueError:
            return response.text
    return response.text


class HttpRequestExecutor(NodeExecutor):
    node_type = NodeType.HTTP_REQUEST
    label = "HTTP Request"

    def validate(self, call: NodeCall) -> None:
        self.require(call, "endpoint", "Endpoint is required")
        method = (call.config.get("method") or "GET").upper()
        if method not in HTTP_METHODS:
            raise self.config_error(call, f"Unsupported method '{method}'")

    async def run(self, call: NodeCall) -> Context:
        variable_name = call.config.get("variableName") or "httpResponse"
        method = (call.config.get("method") or "GET").upper()
        endpoint = self.templates.render(call.config["endpoint"], call.context)

        content = None
        headers = {}
        if method in BODY_METHODS and call.config.get("body"):
            content = self.templates.render(call.config["body"], call.context)
            try:
                json.loads(content)
                headers["Content-Type"] = "application/json"
            except ValueError:
                headers["Content-Type"] = "text/plain"

        async def request() -> Dict[str, Any]:
            async with self.http_client() as client:
                try:
                    response = await client.request(method, endpoint, content=content, headers=headers)
                except httpx.TransportError as e:
                    raise TransientNodeError(f"HTTP Request Node: {e}", node_id=call.node_id) from e
            raise_for_status(self.label, response, call.node_id)
            return {
                "status": response.status_code,
                "statusText": response.reason_phrase,
                "data": _response_data(response),
            }

        http_response = await call.step.run(self.step_name("http-request", call), request)
        logger.info(f"HTTP {method} {endpoint} -> {http_response['status']}")
        return with_variable(call.context, variable_name, http_response)


class DiscordExecutor(NodeExecutor):
    node_type = NodeType.DISCORD
    label = "Discord"

    def validate(self, call: NodeCall) -> None:
        self.require(call, "variableName", "Variable name is required")
        self.require(call, "webhookUrl", "Webhook URL is required")
        self.require(call, "content", "Message content is required")

    async def run(self, call: NodeCall) -> Context:
        content = self.templates.render(call.config["content"], call.context)[:DISCORD_MAX_CONTENT]
        username = call.config.get("username")
        payload = {"content": content}
        if username:
            payload["username"] = self.templates.render(username, call.context)

        async def send() -> Dict[str, Any]:
            async with self.http_client() as client:
                try:
                    response = await client.post(call.config["webhookUrl"], json=payload)
                except httpx.TransportError as e:
                    raise TransientNodeError(f"Discord Node: {e}", node_id=call.node_id) from e
            raise_for_status(self.label, response, call.node_id)
            return {"messageContent": content}

        result = await call.step.run(self.step_name("discord-webhook", call), send)
        return with_variable(call.context, call.config["variableName"], result)


class EmailExecutor(NodeExecutor):
    """Sends an email with the Resend API; the credential holds the API key."""

    node_type = NodeType.EMAIL
    label = "Email"

    def validate(self, call: NodeCall) -> None:
        self.require(call, "variableName", "Variable name is required")
        self.require(call, "credentialId", "Credential is required")
        self.require(call, "from", "From address is required")
        self.require(call, "to", "To address is required")
        self.require(call, "subject", "Subject is required")
        self.require(call, "body", "Email body is required")

    async def run(self, call: NodeCall) -> Context:
        api_key = await self.get_credential(call, call.config["credentialId"])

        def render(key: str) -> str:
            return self.templates.render(call.config[key], call.context)

        sender = render("from")
        recipients = [address.strip() for address in render("to").split(",") if address.strip()]
        subject = render("subject")
        body = render("body")

        payload = {"from": sender, "to": recipients, "subject": subject}
        payload["html" if call.config.get("isHtml") else "text"] = body

        async def send() -> Dict[str, Any]:
            async with self.http_client() as client:
                try:
                    response = await client.post(
                        RESEND_API_URL,
                        json=payload,
                        headers={"Authorization": f"Bearer {api_key}"},
                    )
                except httpx.TransportError as e:
                    raise TransientNodeError(f"Email Node: {e}", node_id=call.node_id) from e

            if response.status_code == 401:
                raise NonRetriableNodeError(
                    "Email Node: Invalid API key. Please verify your Resend API key is correct.",
                    node_id=call.node_id, status_code=401,
                )
            if response.status_code == 403:
                raise NonRetriableNodeError(
                    "Email Node: Forbidden. Your API key may not have the required permissions.",
                    node_id=call.node_id, status_code=403,
                )
            if response.status_code == 422:
                detail = _response_data(response)
                message = detail.get("message") if isinstance(detail, dict) else None
                raise NonRetriableNodeError(
                    f"Email Node: {message or 'Validation error'}", node_id=call.node_id, status_code=422
                )
            raise_for_status(self.label, response, call.node_id)

            return {
                "id": response.json().get("id"),
                "from": sender,
                "to": recipients,
                "subject": subject,
            }

        result = await call.step.run(self.step_name("send-email", call), send)
        return with_variable(call.context, call.config["variableName"], result)
