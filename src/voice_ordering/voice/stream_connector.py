"""SpeechStreamConnector: um stream de STT externo por sessão.

Responsabilidades:
- Validar AudioConfig (16 kHz, mono, PCM 16-bit) antes de abrir o stream
- No máximo uma conexão viva por sessão (start duplicado derruba a anterior)
- Push de áudio não bloqueante (fila por conexão + task escritora)
- Watchdog de inatividade (padrão 5 min)
- Em erro do provedor: resultado terminal, decisão do RecoveryEngine
  entregue ao assinante (on_recovery) e reabertura somente se a decisão
  contiver `retry` (backoff 1s/2s/5s)
- Filtro de qualidade na entrega de resultados parciais
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable
from datetime import UTC, datetime

from voice_ordering.application.recovery import (
    ErrorContext,
    RecoveryActionType,
    RecoveryEngine,
    RecoveryResult,
)
from voice_ordering.application.state_machine import SessionStateMachine
from voice_ordering.config.settings import (
    REQUIRED_CHANNELS,
    REQUIRED_ENCODING,
    REQUIRED_SAMPLE_RATE_HZ,
    Settings,
    get_settings,
)
from voice_ordering.domain.errors import (
    ErrorKind,
    ErrorSource,
    InvalidAudioConfig,
    NoActiveStream,
    StreamTimeout,
    classify_error,
)
from voice_ordering.domain.protocols.speech import (
    RecognizeRequest,
    SpeechEvent,
    SpeechProvider,
)
from voice_ordering.infra.retry import BackoffPolicy
from voice_ordering.observability.logging import get_logger, short_id
from voice_ordering.observability.timing import timed
from voice_ordering.voice.models import (
    AudioConfig,
    RecoveryCallback,
    ResultCallback,
    StreamConnection,
    TranscriptionResult,
)
from voice_ordering.voice.quality import analyze_frame, should_forward


def validate_audio_config(config: AudioConfig) -> None:
    """Requisitos de protocolo do STT externo (não negociáveis).

    Raises:
        InvalidAudioConfig: taxa, canais ou codificação diferentes do exigido.
    """
    if config.sample_rate != REQUIRED_SAMPLE_RATE_HZ:
        raise InvalidAudioConfig(
            f"Sample rate must be {REQUIRED_SAMPLE_RATE_HZ}Hz, got {config.sample_rate}Hz"
        )
    if config.channels != REQUIRED_CHANNELS:
        raise InvalidAudioConfig(f"Audio must be mono, got {config.channels} channels")
    if config.encoding.upper() != REQUIRED_ENCODING:
        raise InvalidAudioConfig(
            f"Encoding must be {REQUIRED_ENCODING}, got {config.encoding}"
        )


class SpeechStreamConnector:
    """Gerencia os streams de reconhecimento de todas as sessões."""

    def __init__(
        self,
        provider: SpeechProvider,
        recovery: RecoveryEngine,
        state_machine: SessionStateMachine,
        settings: Settings | None = None,
        policy: BackoffPolicy | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._provider = provider
        self._recovery = recovery
        self._sm = state_machine
        self._settings = settings or get_settings()
        self._policy = policy or recovery.policy
        self._logger = logger or get_logger(__name__)
        self._idle_timeout = self._settings.stream_idle_timeout_seconds
        self._max_queued = self._settings.stream_max_queued_chunks
        self._silence_threshold = self._settings.vad_silence_threshold
        self._min_quality = self._settings.transcript_min_quality
        self._connections: dict[str, StreamConnection] = {}
        self._reopen_tasks: dict[str, asyncio.Task] = {}

    # ------------------------------------------------------------------
    # API pública
    # ------------------------------------------------------------------

    async def start(
        self,
        session_id: str,
        audio_config: AudioConfig,
        on_result: ResultCallback | None = None,
        on_recovery: RecoveryCallback | None = None,
    ) -> StreamConnection:
        """Abre o stream da sessão; a conexão retornada carrega a assinatura.

        Raises:
            InvalidAudioConfig: antes de qualquer contato com o provedor.
        """
        validate_audio_config(audio_config)
        await self.stop(session_id)

        conn = StreamConnection(
            session_id=session_id,
            audio_config=audio_config,
            _on_result=on_result,
            _on_recovery=on_recovery,
        )
        self._connections[session_id] = conn
        try:
            with timed("speech_stream_open", session_id):
                await self._open(conn)
        except Exception:
            self._connections.pop(session_id, None)
            conn.is_active = False
            raise

        self._logger.info(
            "speech_stream_started",
            extra={
                "session_id": short_id(session_id),
                "language_code": audio_config.language_code,
                "alternative_language_codes": audio_config.alternative_language_codes,
            },
        )
        return conn

    async def stop(self, session_id: str) -> None:
        """Encerra o stream da sessão. Sem stream é no-op."""
        reopen = self._reopen_tasks.pop(session_id, None)
        if reopen is not None and reopen is not asyncio.current_task():
            reopen.cancel()

        conn = self._connections.pop(session_id, None)
        if conn is None:
            return
        was_active = conn.is_active
        await self._teardown(conn)
        if was_active:
            await self._deliver(conn, TranscriptionResult.terminal(session_id))
        self._logger.info(
            "speech_stream_stopped",
            extra={
                "session_id": short_id(session_id),
                "frames_received": conn.frames_received,
                "voiced_frames": conn.voiced_frames,
            },
        )

    def push_audio_chunk(self, session_id: str, data: bytes) -> None:
        """Enfileira um chunk PCM sem bloquear o chamador.

        Raises:
            NoActiveStream: a sessão não tem stream.
        """
        if not data:
            self._logger.warning(
                "audio_chunk_dropped",
                extra={"session_id": short_id(session_id), "reason": "empty"},
            )
            return

        conn = self._connections.get(session_id)
        if conn is None:
            raise NoActiveStream(f"No active stream for session {short_id(session_id)}")
        if not conn.is_active or conn._queue is None:
            self._logger.warning(
                "audio_chunk_dropped",
                extra={"session_id": short_id(session_id), "reason": "reconnecting"},
            )
            return

        if conn.audio_config.enable_voice_activity_detection:
            analysis = analyze_frame(data, self._silence_threshold)
            conn.last_frame_energy = analysis.energy
            if analysis.has_voice:
                conn.voiced_frames += 1
        conn.frames_received += 1
        conn.last_activity = datetime.now(tz=UTC)
        conn._last_activity_mono = asyncio.get_running_loop().time()

        try:
            conn._queue.put_nowait(data)
        except asyncio.QueueFull:
            self._logger.warning(
                "audio_chunk_dropped",
                extra={"session_id": short_id(session_id), "reason": "queue_full"},
            )

    async def set_language(self, session_id: str, language_code: str) -> StreamConnection:
        """Troca o idioma reabrindo o stream; a assinatura é preservada.

        Raises:
            NoActiveStream: a sessão não tem stream.
        """
        conn = self._require(session_id)
        conn.audio_config = conn.audio_config.model_copy(update={"language_code": language_code})
        if conn.is_active:
            await self._teardown(conn)
            await self._open(conn)
        self._logger.info(
            "speech_language_updated",
            extra={"session_id": short_id(session_id), "language_code": language_code},
        )
        return conn

    def on_result(self, session_id: str, callback: ResultCallback | None) -> None:
        """Substitui a assinatura da conexão viva."""
        self._require(session_id)._on_result = callback

    def get_connection(self, session_id: str) -> StreamConnection | None:
        return self._connections.get(session_id)

    def is_streaming(self, session_id: str) -> bool:
        conn = self._connections.get(session_id)
        return conn is not None and conn.is_active

    @property
    def active_count(self) -> int:
        return sum(1 for conn in self._connections.values() if conn.is_active)

    async def shutdown(self) -> None:
        for session_id in list(self._connections):
            await self.stop(session_id)

    # ------------------------------------------------------------------
    # Ciclo de vida do stream
    # ------------------------------------------------------------------

    def _require(self, session_id: str) -> StreamConnection:
        conn = self._connections.get(session_id)
        if conn is None:
            raise NoActiveStream(f"No active stream for session {short_id(session_id)}")
        return conn

    async def _open(self, conn: StreamConnection) -> None:
        config = conn.audio_config
        request = RecognizeRequest(
            session_id=conn.session_id,
            language_code=config.language_code,
            sample_rate_hz=config.sample_rate,
            channels=config.channels,
            encoding=config.encoding,
            alternative_language_codes=list(config.alternative_language_codes),
            interim_results=config.enable_partial_results,
        )
        conn._stream = await self._provider.open_stream(request)
        conn._queue = asyncio.Queue(maxsize=self._max_queued)
        conn._last_activity_mono = asyncio.get_running_loop().time()
        conn.last_activity = datetime.now(tz=UTC)
        conn.is_active = True
        conn._tasks = [
            asyncio.create_task(self._write_loop(conn), name=f"stt-writer-{conn.session_id}"),
            asyncio.create_task(self._read_loop(conn), name=f"stt-reader-{conn.session_id}"),
            asyncio.create_task(self._watchdog(conn), name=f"stt-watchdog-{conn.session_id}"),
        ]

    async def _teardown(self, conn: StreamConnection) -> None:
        """Cancela as tasks e fecha o stream. Idempotente."""
        conn.is_active = False
        current = asyncio.current_task()
        tasks = [task for task in conn._tasks if task is not current]
        conn._tasks = []
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        stream, conn._stream, conn._queue = conn._stream, None, None
        if stream is not None:
            try:
                await stream.close()
            except Exception as exc:
                self._logger.warning(
                    "speech_stream_close_failed",
                    extra={
                        "session_id": short_id(conn.session_id),
                        "error_type": type(exc).__name__,
                    },
                )

    async def _write_loop(self, conn: StreamConnection) -> None:
        queue, stream = conn._queue, conn._stream
        if queue is None or stream is None:
            return
        while True:
            chunk = await queue.get()
            try:
                await stream.write(chunk)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                await self._fail(conn, exc)
                return

    async def _read_loop(self, conn: StreamConnection) -> None:
        stream = conn._stream
        if stream is None:
            return
        try:
            async for event in stream.results():
                if event.error is not None:
                    await self._fail(conn, event.error)
                    return
                await self._deliver(conn, self._to_result(conn, event))
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            await self._fail(conn, exc)

    async def _watchdog(self, conn: StreamConnection) -> None:
        loop = asyncio.get_running_loop()
        while True:
            remaining = self._idle_timeout - (loop.time() - conn._last_activity_mono)
            if remaining <= 0:
                break
            await asyncio.sleep(remaining)
        self._logger.warning(
            "speech_stream_idle_timeout",
            extra={"session_id": short_id(conn.session_id), "timeout_seconds": self._idle_timeout},
        )
        await self._fail(
            conn,
            StreamTimeout(f"No audio received for {self._idle_timeout:g}s"),
            allow_reopen=False,
        )

    # ------------------------------------------------------------------
    # Falhas e recuperação
    # ------------------------------------------------------------------

    async def _fail(
        self, conn: StreamConnection, error: BaseException, *, allow_reopen: bool = True
    ) -> None:
        """Resultado terminal -> RecoveryEngine -> reabre só se houver `retry`."""
        session_id = conn.session_id
        if not conn.is_active or self._connections.get(session_id) is not conn:
            return
        kind = classify_error(error)
        self._logger.warning(
            "speech_stream_error",
            extra={
                "session_id": short_id(session_id),
                "error_kind": kind.value,
                "error_type": type(error).__name__,
                "retry_count": conn.retry_count,
            },
        )

        await self._teardown(conn)
        await self._deliver(conn, TranscriptionResult.terminal(session_id, error=kind.value))

        async with self._sm.session_lock(session_id):
            decision = self._recovery.handle(
                ErrorContext(
                    session_id=session_id,
                    source=ErrorSource.VOICE,
                    error=error,
                    retry_count=conn.retry_count,
                )
            )
        await self._notify_recovery(conn, decision)

        if self._connections.get(session_id) is not conn:
            return
        retry = decision.action(RecoveryActionType.RETRY)
        if allow_reopen and retry is not None and self._policy.allows(conn.retry_count):
            delay = self._policy.delay_for(conn.retry_count)
            self._reopen_tasks[session_id] = asyncio.create_task(
                self._reopen(conn, delay, kind), name=f"stt-reopen-{session_id}"
            )
            return

        if self._connections.get(session_id) is conn:
            del self._connections[session_id]
        self._logger.info(
            "speech_stream_closed_after_error",
            extra={
                "session_id": short_id(session_id),
                "strategy": decision.strategy.value if decision.strategy else None,
            },
        )

    async def _reopen(self, conn: StreamConnection, delay: float, kind: ErrorKind) -> None:
        session_id = conn.session_id
        await asyncio.sleep(delay)
        if self._reopen_tasks.get(session_id) is asyncio.current_task():
            del self._reopen_tasks[session_id]
        if self._connections.get(session_id) is not conn:
            return

        conn.retry_count += 1
        if kind == ErrorKind.LANGUAGE_DETECTION:
            self._fallback_language(conn)
        self._logger.info(
            "speech_stream_reopening",
            extra={
                "session_id": short_id(session_id),
                "attempt": conn.retry_count,
                "delay_seconds": delay,
                "language_code": conn.audio_config.language_code,
            },
        )
        try:
            await self._open(conn)
        except Exception as exc:
            conn.is_active = True
            await self._fail(conn, exc)

    def _fallback_language(self, conn: StreamConnection) -> None:
        """Avança para o próximo código em alternative_language_codes."""
        config = conn.audio_config
        alternatives = [c for c in config.alternative_language_codes if c != config.language_code]
        if not alternatives:
            return
        conn.audio_config = config.model_copy(
            update={
                "language_code": alternatives[0],
                "alternative_language_codes": [*alternatives[1:], config.language_code],
            }
        )

    # ------------------------------------------------------------------
    # Entrega
    # ------------------------------------------------------------------

    def _to_result(self, conn: StreamConnection, event: SpeechEvent) -> TranscriptionResult:
        return TranscriptionResult(
            session_id=conn.session_id,
            text=event.text,
            confidence=min(max(event.confidence, 0.0), 1.0),
            is_final=event.is_final,
            alternatives=list(event.alternatives),
            word_confidences=list(event.word_confidences),
            language_code=event.language_code or conn.audio_config.language_code,
        )

    async def _deliver(self, conn: StreamConnection, result: TranscriptionResult) -> None:
        if not should_forward(result, self._min_quality):
            self._logger.debug(
                "transcription_filtered",
                extra={"session_id": short_id(conn.session_id)},
            )
            return
        await self._invoke(conn, conn._on_result, result, "transcription_callback_failed")

    async def _notify_recovery(self, conn: StreamConnection, decision: RecoveryResult) -> None:
        await self._invoke(conn, conn._on_recovery, decision, "recovery_callback_failed")

    async def _invoke(
        self,
        conn: StreamConnection,
        callback: Callable | None,
        payload: object,
        failure_event: str,
    ) -> None:
        if callback is None:
            return
        try:
            outcome = callback(payload)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception:
            self._logger.exception(
                failure_event,
                extra={"session_id": short_id(conn.session_id)},
            )
