"""FastAPI application exposing the play/disconnect control plane."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import PlainTextResponse
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from .config import BotConfig, load_config
from .errors import ERROR_SPECS, ErrorCode, StreamControlError
from .models import QualityHints
from .stream_manager import StreamingManager
from .transport import load_transport

logger = logging.getLogger(__name__)


class QualitiesPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    height: Optional[int] = Field(None, gt=0)
    width: Optional[int] = Field(None, gt=0)
    fps: Optional[int] = Field(None, gt=0)
    bitrate_kbps: Optional[int] = Field(None, alias="bitrateKbps", gt=0)
    max_bitrate_kbps: Optional[int] = Field(None, alias="maxBitrateKbps", gt=0)
    h26x_preset: Optional[str] = Field(None, alias="h26xPreset")
    hw_accel: Optional[bool] = Field(None, alias="hwAccel")
    read_at_native_fps: Optional[bool] = Field(None, alias="readAtNativeFps")
    minimize_latency: Optional[bool] = Field(None, alias="minimizeLatency")
    force_chacha20_encryption: Optional[bool] = Field(None, alias="forceChacha20Encryption")
    rtcp_sender_report_enabled: Optional[bool] = Field(None, alias="rtcpSenderReportEnabled")

    def to_hints(self) -> QualityHints:
        return QualityHints(
            width=self.width,
            height=self.height,
            fps=self.fps,
            bitrate_kbps=self.bitrate_kbps,
            max_bitrate_kbps=self.max_bitrate_kbps,
            h26x_preset=self.h26x_preset,
            hardware_acceleration=self.hw_accel,
            read_at_native_fps=self.read_at_native_fps,
            minimize_latency=self.minimize_latency,
            force_chacha20_encryption=self.force_chacha20_encryption,
            rtcp_sender_report_enabled=self.rtcp_sender_report_enabled,
        )


class PlayPayload(BaseModel):
    guild_id: str = Field(..., alias="guildId", min_length=1)
    channel_id: str = Field(..., alias="channelId", min_length=1)
    stream_url: str = Field(..., validation_alias=AliasChoices("streamUrl", "streamURL"), min_length=1)
    qualities: Optional[QualitiesPayload] = None


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> PlainTextResponse:
    logger.warning("Invalid request to %s: %s", request.url.path, exc.errors())
    spec = ERROR_SPECS[ErrorCode.INVALID_REQUEST]
    return PlainTextResponse(spec.message, status_code=spec.http_status)


def create_app(config: Optional[BotConfig] = None, manager: Optional[StreamingManager] = None) -> FastAPI:
    config = config or load_config()
    if manager is None:
        manager = StreamingManager(config, load_transport(config))
    app = FastAPI(title=config.project_name)
    app.state.manager = manager
    app.add_exception_handler(RequestValidationError, _validation_error_handler)

    @app.get("/health")
    async def health() -> Dict[str, str]:
        return {"status": "ok"}

    @app.get("/status")
    async def status() -> Dict[str, Any]:
        return manager.status()

    @app.post("/play", response_class=PlainTextResponse)
    async def play(payload: PlayPayload):
        hints = payload.qualities.to_hints() if payload.qualities else QualityHints()
        try:
            await manager.play(payload.guild_id, payload.channel_id, payload.stream_url, hints)
        except StreamControlError as exc:
            raise HTTPException(status_code=exc.http_status, detail=exc.detail) from exc
        return "Streaming started."

    @app.post("/disconnect", response_class=PlainTextResponse)
    async def disconnect():
        try:
            await manager.disconnect()
        except StreamControlError as exc:
            raise HTTPException(status_code=exc.http_status, detail=exc.detail) from exc
        return "Successfully disconnected and stopped the stream."

    @app.on_event("startup")
    async def startup_event() -> None:
        manager.start()
        logger.info("Voice streamer started.")

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        await manager.shutdown()
        logger.info("Voice streamer stopped.")

    return app


def main() -> None:
    config = load_config()
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    app = create_app(config)
    logger.info("API server is listening on port %s", config.port)
    uvicorn.run(app, host=config.host, port=config.port, log_config=None)


if __name__ == "__main__":
    main()
