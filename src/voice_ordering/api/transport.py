"""SessionTransportHandler: websocket bidirecional por sessão.

Responsabilidades:
- Conectar (sessionId na query string; sem ele, close 1008 antes do accept)
- Despachar mensagens de controle/áudio para o SpeechStreamConnector
- Único escritor por conexão (fila de saída + task escritora)
- Heartbeat: conexão sem sinal de vida desde o ciclo anterior é fechada (1001)
- Teardown idempotente: para o stream de voz primeiro, depois libera o registro
- Transcrições finais não vazias viram turns de voz no AgentRouter

Envelope (chaves camelCase): {type, sessionId, data, timestamp}
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError
from starlette.websockets import WebSocket, WebSocketDisconnect

from voice_ordering.application.agent_router import AgentRouter
from voice_ordering.application.state_machine import SessionStateMachine
from voice_ordering.application.recovery import RecoveryResult
from voice_ordering.application.ui_events import UIEvent, recovery_events
from voice_ordering.config.settings import Settings, get_settings
from voice_ordering.domain.enums import InputType
from voice_ordering.domain.errors import VoiceOrderingError
from voice_ordering.domain.models import UserInput
from voice_ordering.domain.session import SessionState
from voice_ordering.observability.logging import get_logger, short_id
from voice_ordering.observability.middleware import bind_session
from voice_ordering.voice.models import AudioConfig, TranscriptionResult
from voice_ordering.voice.stream_connector import SpeechStreamConnector

CLOSE_POLICY_VIOLATION = 1008
CLOSE_GOING_AWAY = 1001

# Códigos de erro enviados ao cliente
MESSAGE_PROCESSING_ERROR = "MESSAGE_PROCESSING_ERROR"
STREAM_START_ERROR = "STREAM_START_ERROR"
STREAM_STOP_ERROR = "STREAM_STOP_ERROR"
AUDIO_PROCESSING_ERROR = "AUDIO_PROCESSING_ERROR"
LANGUAGE_UPDATE_ERROR = "LANGUAGE_UPDATE_ERROR"


def _now_ms() -> int:
    return int(time.time() * 1000)


def envelope(message_type: str, session_id: str, data: dict[str, Any] | None = None) -> dict:
    """Mensagem no formato do protocolo do websocket."""
    return {
        "type": message_type,
        "sessionId": session_id,
        "data": data or {},
        "timestamp": _now_ms(),
    }


@dataclass(eq=False)
class TransportConnection:
    """Registro de um websocket conectado."""

    session_id: str
    websocket: WebSocket
    is_alive: bool = True
    closed: bool = False
    connected_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    last_activity: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    outbox: asyncio.Queue[dict | None] = field(default_factory=asyncio.Queue, repr=False)
    writer: asyncio.Task | None = field(default=None, repr=False)
    route_tasks: set[asyncio.Task] = field(default_factory=set, repr=False)


class SessionTransportHandler:
    """Gerencia os websockets de todas as sessões."""

    def __init__(
        self,
        connector: SpeechStreamConnector,
        router: AgentRouter,
        state_machine: SessionStateMachine,
        settings: Settings | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._connector = connector
        self._router = router
        self._sm = state_machine
        self._settings = settings or get_settings()
        self._logger = logger or get_logger(__name__)
        self._connections: dict[str, TransportConnection] = {}
        self._handlers: dict[str, Callable[[TransportConnection, dict], Awaitable[None]]] = {
            "start_stream": self._handle_start_stream,
            "stop_stream": self._handle_stop_stream,
            "audio_chunk": self._handle_audio_chunk,
            "set_language": self._handle_set_language,
            "ping": self._handle_ping,
            "pong": self._handle_pong,
        }

    # ------------------------------------------------------------------
    # Ciclo de vida da conexão
    # ------------------------------------------------------------------

    async def serve(self, websocket: WebSocket) -> None:
        """Atende um websocket até a desconexão."""
        session_id = websocket.query_params.get("sessionId")
        if not session_id:
            self._logger.warning("transport_rejected", extra={"reason": "missing_session_id"})
            await websocket.close(code=CLOSE_POLICY_VIOLATION, reason="Session ID required")
            return

        await websocket.accept()
        bind_session(session_id)
        previous = self._connections.get(session_id)
        if previous is not None:
            await self.teardown(previous, code=CLOSE_GOING_AWAY)

        conn = TransportConnection(session_id=session_id, websocket=websocket)
        self._connections[session_id] = conn
        conn.writer = asyncio.create_task(self._write_loop(conn))
        self._sm.get_or_create(session_id)
        self._logger.info("transport_connected", extra={"session_id": short_id(session_id)})
        self.send(conn, "ping", {"status": "connected"})

        try:
            while not conn.closed:
                raw = await websocket.receive_text()
                await self.handle_message(conn, raw)
        except WebSocketDisconnect as exc:
            self._logger.info(
                "transport_client_disconnected",
                extra={"session_id": short_id(session_id), "code": exc.code},
            )
        except RuntimeError:
            # receive após close iniciado pelo servidor (heartbeat ou substituição)
            self._logger.debug(
                "transport_receive_after_close", extra={"session_id": short_id(session_id)}
            )
        finally:
            await self.teardown(conn)

    async def teardown(self, conn: TransportConnection, code: int | None = None) -> None:
        """Encerra a conexão. Idempotente."""
        if conn.closed:
            return
        conn.closed = True
        session_id = conn.session_id

        try:
            await self._connector.stop(session_id)
        except Exception:
            self._logger.exception(
                "speech_stream_stop_failed", extra={"session_id": short_id(session_id)}
            )
        async with self._sm.session_lock(session_id):
            if self._sm.get_or_create(session_id).state == SessionState.LISTENING:
                self._sm.transition(session_id, SessionState.IDLE)

        if self._connections.get(session_id) is conn:
            del self._connections[session_id]

        conn.outbox.put_nowait(None)
        if conn.writer is not None and conn.writer is not asyncio.current_task():
            await asyncio.gather(conn.writer, return_exceptions=True)
        if code is not None:
            try:
                await conn.websocket.close(code=code)
            except RuntimeError:
                self._logger.debug(
                    "transport_already_closed", extra={"session_id": short_id(session_id)}
                )

        self._logger.info(
            "transport_disconnected",
            extra={"session_id": short_id(session_id), "close_code": code},
        )

    async def heartbeat_once(self) -> int:
        """Um ciclo de heartbeat; retorna quantas conexões foram encerradas."""
        dead = [conn for conn in self._connections.values() if not conn.is_alive]
        for conn in dead:
            self._logger.info(
                "transport_heartbeat_timeout", extra={"session_id": short_id(conn.session_id)}
            )
            await self.teardown(conn, code=CLOSE_GOING_AWAY)
        for conn in list(self._connections.values()):
            conn.is_alive = False
            self.send(conn, "ping", {"status": "heartbeat"})
        return len(dead)

    async def run_heartbeat(self, interval_seconds: float) -> None:
        """Loop de heartbeat (cancelado no shutdown)."""
        while True:
            await asyncio.sleep(interval_seconds)
            await self.heartbeat_once()

    async def shutdown(self) -> None:
        for conn in list(self._connections.values()):
            tasks = list(conn.route_tasks)
            await self.teardown(conn, code=CLOSE_GOING_AWAY)
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    def get_connection(self, session_id: str) -> TransportConnection | None:
        return self._connections.get(session_id)

    def is_connected(self, session_id: str) -> bool:
        return session_id in self._connections

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    # ------------------------------------------------------------------
    # Saída (único escritor)
    # ------------------------------------------------------------------

    def send(self, conn: TransportConnection, message_type: str, data: dict | None = None) -> None:
        """Enfileira uma mensagem para a task escritora da conexão."""
        if conn.closed:
            return
        conn.outbox.put_nowait(envelope(message_type, conn.session_id, data))

    def send_error(self, conn: TransportConnection, message: str, code: str) -> None:
        self.send(conn, "error", {"error": message, "code": code})

    def push_events(self, session_id: str, events: list[UIEvent]) -> bool:
        """Entrega eventos de UI à sessão conectada. False se não houver websocket."""
        conn = self._connections.get(session_id)
        if conn is None:
            return False
        for event in events:
            self.send(conn, event.type.value, event.data)
        return True

    async def _write_loop(self, conn: TransportConnection) -> None:
        while True:
            message = await conn.outbox.get()
            if message is None:
                return
            try:
                await conn.websocket.send_json(message)
            except (WebSocketDisconnect, RuntimeError):
                self._logger.warning(
                    "transport_send_failed",
                    extra={"session_id": short_id(conn.session_id), "type": message["type"]},
                )
                return

    # ------------------------------------------------------------------
    # Entrada
    # ------------------------------------------------------------------

    async def handle_message(self, conn: TransportConnection, raw: str) -> None:
        """Decodifica e despacha uma mensagem do cliente."""
        conn.last_activity = datetime.now(tz=UTC)
        try:
            message = json.loads(raw)
            if not isinstance(message, dict):
                raise ValueError("message must be a JSON object")
        except ValueError:
            self._logger.warning(
                "transport_message_invalid", extra={"session_id": short_id(conn.session_id)}
            )
            self.send_error(conn, "Failed to process message", MESSAGE_PROCESSING_ERROR)
            return

        message_type = message.get("type")
        handler = self._handlers.get(message_type) if isinstance(message_type, str) else None
        if handler is None:
            self._logger.warning(
                "transport_message_unknown",
                extra={"session_id": short_id(conn.session_id), "type": message_type},
            )
            return

        data = message.get("data")
        await handler(conn, data if isinstance(data, dict) else {})

    async def _handle_start_stream(self, conn: TransportConnection, data: dict) -> None:
        session_id = conn.session_id
        defaults = AudioConfig(
            language_code=self._sm.get_or_create(session_id).preferences.language,
            alternative_language_codes=self._settings.alternative_language_codes,
        )
        try:
            overrides = data.get("audioConfig") or {}
            config = AudioConfig.model_validate(
                {**defaults.model_dump(by_alias=True), **overrides}
            )
            await self._connector.start(
                session_id,
                config,
                on_result=lambda result: self._on_transcription(conn, result),
                on_recovery=lambda decision: self._on_stream_recovery(conn, decision),
            )
        except (ValidationError, VoiceOrderingError, TypeError) as exc:
            self.send_error(conn, f"Failed to start stream: {exc}", STREAM_START_ERROR)
            return

        async with self._sm.session_lock(session_id):
            if self._sm.can_transition(session_id, SessionState.LISTENING):
                self._sm.transition(session_id, SessionState.LISTENING)
        self.send(
            conn,
            "ping",
            {"status": "stream_started", "audioConfig": config.model_dump(by_alias=True)},
        )

    async def _handle_stop_stream(self, conn: TransportConnection, data: dict) -> None:
        session_id = conn.session_id
        try:
            await self._connector.stop(session_id)
        except VoiceOrderingError as exc:
            self.send_error(conn, f"Failed to stop stream: {exc}", STREAM_STOP_ERROR)
            return
        async with self._sm.session_lock(session_id):
            if self._sm.get_or_create(session_id).state == SessionState.LISTENING:
                self._sm.transition(session_id, SessionState.IDLE)
        self.send(conn, "ping", {"status": "stream_stopped"})

    async def _handle_audio_chunk(self, conn: TransportConnection, data: dict) -> None:
        encoded = data.get("audioData")
        if not encoded or not isinstance(encoded, str):
            self.send_error(
                conn, "Failed to process audio: No audio data provided", AUDIO_PROCESSING_ERROR
            )
            return
        try:
            chunk = base64.b64decode(encoded, validate=True)
            self._connector.push_audio_chunk(conn.session_id, chunk)
        except (binascii.Error, VoiceOrderingError) as exc:
            self.send_error(conn, f"Failed to process audio: {exc}", AUDIO_PROCESSING_ERROR)

    async def _handle_set_language(self, conn: TransportConnection, data: dict) -> None:
        language_code = data.get("languageCode")
        if not language_code:
            self.send_error(
                conn, "Failed to set language: Language code is required", LANGUAGE_UPDATE_ERROR
            )
            return
        try:
            await self._connector.set_language(conn.session_id, language_code)
        except VoiceOrderingError as exc:
            self.send_error(conn, f"Failed to set language: {exc}", LANGUAGE_UPDATE_ERROR)
            return
        self._sm.update_preferences(conn.session_id, {"language": language_code})
        self.send(conn, "ping", {"status": "language_updated", "languageCode": language_code})

    async def _handle_ping(self, conn: TransportConnection, data: dict) -> None:
        conn.is_alive = True
        self.send(conn, "ping", {"status": "pong"})

    async def _handle_pong(self, conn: TransportConnection, data: dict) -> None:
        conn.is_alive = True

    # ------------------------------------------------------------------
    # Resultados de transcrição
    # ------------------------------------------------------------------

    def _on_transcription(self, conn: TransportConnection, result: TranscriptionResult) -> None:
        self.send(conn, "transcription_result", result.model_dump(by_alias=True, mode="json"))
        text = result.text.strip()
        if not (result.is_final and text and self._settings.auto_route_final_transcripts):
            return
        if conn.closed:
            return
        task = asyncio.create_task(self._route_transcript(conn, text))
        conn.route_tasks.add(task)
        task.add_done_callback(conn.route_tasks.discard)

    def _on_stream_recovery(self, conn: TransportConnection, decision: RecoveryResult) -> None:
        """Leva ao cliente a mensagem, as ações e a mudança de estado da recuperação."""
        for event in recovery_events(decision):
            self.send(conn, event.type.value, event.data)

    async def _route_transcript(self, conn: TransportConnection, text: str) -> None:
        bind_session(conn.session_id)
        response = await self._router.handle(
            conn.session_id, UserInput(type=InputType.VOICE, content=text)
        )
        for event in response.ui_events:
            self.send(conn, event.type.value, event.data)
