"""
WebSocket transport speaking the CapyDeploy agent protocol.

Text frames are JSON envelopes:

  request:   {"id": "<uuid>", "type": "<msg_type>", "payload": {...}}
  response:  {"id": "<same uuid>", "type": "<reply_type>", "payload": {...}}
  error:     {"id": "<same uuid>", "type": "error", "error": {"code": int, "message": str}}

File data goes in binary frames:

  [4 bytes BE: header_len][header_len bytes: header JSON][raw chunk]

  header = {"id", "uploadId", "filePath", "offset"}
"""

from __future__ import annotations

import asyncio
import json
import os
import posixpath
import struct
import uuid
from typing import Callable, Optional

import websockets

from config import CHUNK_SIZE
from errors import TransportError
from log import logger

from .base import Transport, read_chunks

MAX_MESSAGE_SIZE = 50 * 1024 * 1024  # 50MB, same cap the agent uses
OPEN_TIMEOUT = 10
REQUEST_TIMEOUT = 60
PROTOCOL_VERSION = "1.0"


def encode_binary_frame(header: dict, data: bytes) -> bytes:
    """Pack a chunk header and its payload into one binary frame."""
    header_bytes = json.dumps(header).encode("utf-8")
    return struct.pack(">I", len(header_bytes)) + header_bytes + data


def decode_binary_frame(frame: bytes) -> tuple[dict, bytes]:
    if len(frame) < 4:
        raise ValueError("binary frame too short")
    header_len = struct.unpack(">I", frame[:4])[0]
    if len(frame) < 4 + header_len:
        raise ValueError("binary frame header incomplete")
    header = json.loads(frame[4:4 + header_len].decode("utf-8"))
    return header, frame[4 + header_len:]


def split_remote_path(path: str) -> tuple[str, str]:
    """Split '/games/foo/bar.bin' into ('games/foo', 'bar.bin').

    The agent rejects absolute paths, so the leading slash is dropped. It also
    installs everything under a named directory, so a file directly under the
    root has nowhere to go and raises ValueError.
    """
    clean = path.strip("/")
    parent, name = posixpath.split(clean)
    if not parent:
        raise ValueError(f"{path}: the agent needs a parent directory (use a non-root destination)")
    return parent, name


class WebSocketTransport(Transport):
    """Client for a CapyDeploy agent. One connection multiplexes every transfer."""

    def __init__(
        self,
        url: str,
        hub_id: Optional[str] = None,
        token: Optional[str] = None,
        hub_name: str = "CapyUpload",
        chunk_size: int = CHUNK_SIZE,
        request_timeout: float = REQUEST_TIMEOUT,
    ):
        self.url = url
        self.hub_id = hub_id or uuid.uuid4().hex[:8]
        self.token = token or ""
        self.hub_name = hub_name
        self.chunk_size = chunk_size
        self.request_timeout = request_timeout
        self.agent: Optional[dict] = None
        self._websocket = None
        self._read_task: Optional[asyncio.Task] = None
        self._pending: dict[str, asyncio.Future] = {}
        self._connect_lock = asyncio.Lock()

    @property
    def connected(self) -> bool:
        return self._websocket is not None

    async def connect(self) -> dict:
        """Open the connection and authenticate. Returns the agent status payload."""
        async with self._connect_lock:
            if self._websocket is not None:
                return self.agent or {}

            self._websocket = await websockets.connect(
                self.url, max_size=MAX_MESSAGE_SIZE, open_timeout=OPEN_TIMEOUT
            )
            self._read_task = asyncio.get_running_loop().create_task(self._read_pump())
            logger.info(f"Connected to agent at {self.url}")

            try:
                resp = await self._request("hub_connected", {
                    "hubId": self.hub_id,
                    "name": self.hub_name,
                    "version": PROTOCOL_VERSION,
                    "platform": "linux",
                    "token": self.token,
                })
            except BaseException:
                await self.close()
                raise

            if resp.get("type") == "pairing_required":
                code = resp.get("payload", {}).get("code", "")
                await self.close()
                raise TransportError(401, f"agent requires pairing (code {code})")

            self.agent = resp.get("payload", {})
            logger.info(f"Agent ready: {self.agent.get('name', '?')} v{self.agent.get('version', '?')}")
            return self.agent

    async def close(self) -> None:
        websocket, self._websocket = self._websocket, None
        if websocket is not None:
            try:
                await websocket.close()
            except Exception as e:
                logger.debug(f"Error closing websocket: {e}")
        if self._read_task and not self._read_task.done():
            self._read_task.cancel()
            try:
                await self._read_task
            except asyncio.CancelledError:
                pass
        self._read_task = None
        self._fail_pending(ConnectionError("connection closed"))

    # ── Transport contract ───────────────────────────────────────────────────

    async def upload_file(
        self, path: str, handle, overwrite: bool, on_progress: Callable[[int], None]
    ) -> None:
        parent, name = split_remote_path(path)
        await self.connect()

        total_size = os.path.getsize(handle)

        resp = await self._request("init_upload", {
            "config": {"gameName": parent, "overwrite": overwrite},
            "totalSize": total_size,
            "files": [{"path": name, "size": total_size}],
        })
        payload = resp.get("payload", {})
        upload_id = payload.get("uploadId", "")
        chunk_size = payload.get("chunkSize") or self.chunk_size

        try:
            offset = 0
            for chunk in read_chunks(handle, chunk_size):
                await self._send_chunk(upload_id, name, offset, chunk)
                offset += len(chunk)
                on_progress(offset)

            await self._request("complete_upload", {
                "uploadId": upload_id,
                "createShortcut": False,
            })
        except BaseException:
            await self._cancel_upload(upload_id)
            raise

    async def create_directory(self, path: str) -> None:
        game_name = path.strip("/")
        if not game_name:
            raise ValueError("the agent cannot create the root directory")
        await self.connect()
        resp = await self._request("init_upload", {
            "config": {"gameName": game_name},
            "totalSize": 0,
            "files": [],
        })
        upload_id = resp.get("payload", {}).get("uploadId", "")
        await self._request("complete_upload", {
            "uploadId": upload_id,
            "createShortcut": False,
        })

    # ── Requests ─────────────────────────────────────────────────────────────

    async def _request(self, msg_type: str, payload: Optional[dict]) -> dict:
        msg_id = str(uuid.uuid4())
        msg = {"id": msg_id, "type": msg_type}
        if payload is not None:
            msg["payload"] = payload
        return await self._send_and_wait(msg_id, json.dumps(msg), msg_type)

    async def _send_chunk(self, upload_id: str, file_path: str, offset: int, data: bytes) -> dict:
        msg_id = str(uuid.uuid4())
        frame = encode_binary_frame({
            "id": msg_id,
            "uploadId": upload_id,
            "filePath": file_path,
            "offset": offset,
        }, data)
        return await self._send_and_wait(msg_id, frame, "upload_chunk")

    async def _send_and_wait(self, msg_id: str, data, label: str) -> dict:
        if self._websocket is None:
            raise ConnectionError("not connected")

        future = asyncio.get_running_loop().create_future()
        self._pending[msg_id] = future
        try:
            await self._websocket.send(data)
            logger.debug(f"WS SENT [{label}] id={msg_id}")
            resp = await asyncio.wait_for(future, timeout=self.request_timeout)
        finally:
            self._pending.pop(msg_id, None)

        if resp.get("type") == "error":
            error = resp.get("error", {})
            raise TransportError(error.get("code", 500), error.get("message", "unknown error"))
        return resp

    async def _cancel_upload(self, upload_id: str) -> None:
        if not upload_id or self._websocket is None:
            return
        try:
            await self._request("cancel_upload", {"uploadId": upload_id})
        except Exception as e:
            logger.warning(f"Failed to cancel upload {upload_id}: {e}")

    # ── Reader ───────────────────────────────────────────────────────────────

    async def _read_pump(self) -> None:
        """Route every incoming message to the request waiting for its id."""
        websocket = self._websocket
        try:
            async for message in websocket:
                if isinstance(message, bytes):
                    logger.warning("Unexpected binary message from agent")
                    continue
                try:
                    msg = json.loads(message)
                except json.JSONDecodeError:
                    logger.error("Failed to parse JSON message from agent")
                    continue

                msg_id = msg.get("id", "")
                logger.debug(f"WS RECV [{msg.get('type')}] id={msg_id}")
                future = self._pending.get(msg_id)
                if future is not None and not future.done():
                    future.set_result(msg)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Connection error: {e}")
        finally:
            if self._websocket is websocket:
                self._websocket = None
            self._fail_pending(ConnectionError("connection to agent lost"))

    def _fail_pending(self, exc: Exception) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(exc)
        self._pending.clear()
