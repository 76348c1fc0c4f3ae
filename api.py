from typing import Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel
import uvicorn

from meter_engine.config import ConfigurationError
from meter_engine.scale import scale_description


def create_app(engine):
    app = FastAPI(title="VU Meter Engine API")

    class MeterModel(BaseModel):
        reference_level: Optional[float] = None
        peak_hold_ms: float = 1000.0
        peak_fade_ms: float = 5000.0
        clip_threshold_deg: float = 23.0
        window_duration_sec: float = 0.05
        attack_time: float = 0.3
        release_time: float = 0.3

    class ConfigModel(BaseModel):
        sample_rate: int
        channels: int = 2
        layout: str = "stereo"
        fps: float = 60.0
        device: Optional[int] = None
        blocksize: int = 0
        meter: MeterModel = MeterModel()

    @app.get("/status")
    def status():
        return engine.get_status()

    @app.get("/vu")
    def vu():
        return engine.get_readings()

    @app.get("/scale")
    def scale():
        return scale_description()

    @app.get("/self-check")
    def self_check():
        try:
            result = engine.self_check()
        except Exception as e:
            raise HTTPException(status_code=500, detail=f"self-check failed: {e}")
        if not (result.get("reference_ok") and result.get("silence_ok") and result.get("clip_ok")):
            raise HTTPException(status_code=500, detail=result)
        return result

    @app.post("/config")
    def update_config(cfg: ConfigModel):
        cfgdict = cfg.model_dump()
        if cfgdict["meter"].get("reference_level") is None:
            cfgdict["meter"].pop("reference_level")

        # 1) validate first (no side effects)
        try:
            engine.validate_config(cfgdict)
        except ConfigurationError as ce:
            raise HTTPException(status_code=400, detail=str(ce))
        except Exception as e:
            raise HTTPException(status_code=500, detail=f"validation error: {e}")

        # 2) apply config
        try:
            engine.reload_config(cfgdict)
        except Exception as e:
            raise HTTPException(status_code=500, detail=f"failed to apply config: {e}")

        return {"status": "ok"}

    return app


def run_api(app, host: str, port: int):
    uvicorn.run(app, host=host, port=port, log_level="info")
