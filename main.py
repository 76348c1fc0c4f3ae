import argparse
import json
import threading
import time
from pathlib import Path

from loguru import logger

from meter_engine.config import ConfigurationError, DEFAULT_SAMPLE_RATE, MeterOptions, STEREO_REFERENCE_LEVEL_DBFS
from meter_engine.engine import MeterEngine, StereoMeter, self_check_metering, simulate
from meter_engine.scale import ANGLE_MIN, ANGLE_SPAN
from meter_engine.signals import square_bursts, stereo
from api import create_app, run_api


DEFAULT_CONFIG = Path("config.json")
BAR_WIDTH = 40


def load_config(path: Path):
    if not path.exists():
        logger.warning(f"{path} not found, using defaults")
        return {}
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def needle_bar(reading: dict) -> str:
    pos = int(round((reading["angle"] - ANGLE_MIN) / ANGLE_SPAN * (BAR_WIDTH - 1)))
    bar = "".join("|" if i == pos else ("-" if i < pos else " ") for i in range(BAR_WIDTH))
    lamp = "*" if reading["peak_active"] else " "
    return f"[{bar}] {reading['angle']:+6.1f}deg {lamp}"


def cmd_devices(args):
    from meter_engine.audio_device import list_devices
    list_devices()


def cmd_console(args):
    cfg = load_config(Path(args.config))
    eng = MeterEngine(cfg)
    eng.start()
    logger.info("Console meter running, press Ctrl+C to quit")
    try:
        while True:
            line = "  ".join(f"{k} {needle_bar(r)}" for k, r in eng.get_readings().items())
            print(f"\r{line}", end="", flush=True)
            time.sleep(1.0 / 30)
    except KeyboardInterrupt:
        print()
        logger.info("Shutting down...")
    finally:
        eng.stop()


def cmd_run(args):
    cfg = load_config(Path(args.config))
    eng = MeterEngine(cfg)
    eng.start()
    logger.info("Metering engine started")

    # Run API in a thread, sharing engine instance via app state
    app = create_app(eng)
    api_thread = threading.Thread(target=run_api, args=(app, args.host, args.port), daemon=True)
    api_thread.start()
    logger.info(f"HTTP API running at http://{args.host}:{args.port}")
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    finally:
        eng.stop()


def cmd_simulate(args):
    cfg = load_config(Path(args.config))
    fs = int(cfg.get("sample_rate", DEFAULT_SAMPLE_RATE))
    fps = float(cfg.get("fps", 60))
    options = MeterOptions.from_dict(cfg.get("meter", {}), reference_level=STEREO_REFERENCE_LEVEL_DBFS)
    meter = StereoMeter(fs, options)
    signal = stereo(square_bursts(fs=fs, bursts=args.bursts))
    logger.info(f"Simulating {args.bursts} square bursts at {fs} Hz, {fps:g} fps")
    every = max(1, int(fps / 10))
    for frame, (t, readings) in enumerate(simulate(meter, signal, fs=fs, fps=fps)):
        if frame % every:
            continue
        line = "  ".join(f"{k} {needle_bar(r.as_dict())}" for k, r in readings.items())
        print(f"{t:6.2f}s  {line}")


def cmd_self_check(args):
    cfg = load_config(Path(args.config))
    options = MeterOptions.from_dict(cfg.get("meter", {}), reference_level=STEREO_REFERENCE_LEVEL_DBFS)
    result = self_check_metering(int(cfg.get("sample_rate", DEFAULT_SAMPLE_RATE)), options,
                                 fps=float(cfg.get("fps", 60)))
    for k, v in result.items():
        logger.info(f"{k}: {v}")
    if not (result["reference_ok"] and result["silence_ok"] and result["clip_ok"]):
        logger.error("Metering self-check FAILED")
        raise SystemExit(1)
    logger.info("Metering self-check passed")


def main():
    parser = argparse.ArgumentParser(description="VU Meter Engine")
    parser.add_argument("--config", default=str(DEFAULT_CONFIG), help="Path to config.json")

    sub = parser.add_subparsers(dest="cmd")

    p_dev = sub.add_parser("devices", help="List audio input devices")
    p_dev.set_defaults(func=cmd_devices)

    p_run = sub.add_parser("run", help="Run metering engine + HTTP API")
    p_run.add_argument("--host", default="0.0.0.0")
    p_run.add_argument("--port", type=int, default=8000)
    p_run.set_defaults(func=cmd_run)

    p_con = sub.add_parser("console", help="Show live needles in the terminal")
    p_con.set_defaults(func=cmd_console)

    p_sim = sub.add_parser("simulate", help="Meter a generated burst signal offline")
    p_sim.add_argument("--bursts", type=int, default=5)
    p_sim.set_defaults(func=cmd_simulate)

    p_chk = sub.add_parser("self-check", help="Verify calibration, ballistics and clip lamp offline")
    p_chk.set_defaults(func=cmd_self_check)

    args = parser.parse_args()
    if not args.cmd:
        parser.print_help()
        return
    try:
        args.func(args)
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        raise SystemExit(2)


if __name__ == "__main__":
    main()
