"""Metering loop: one MeterSession / StereoMeter driven tick by tick."""

import numpy as np
import pytest

from meter_engine.config import MeterOptions, SamplingConfig
from meter_engine.engine import REST_READING, MeterSession, StereoMeter, simulate
from meter_engine.signals import square_bursts, stereo

from conftest import FPS, FS, WINDOW, periodic_sine, run_ticks


# =============================================================================
# Single needle
# =============================================================================

def test_reference_sine_settles_on_zero_vu(session):
    readings = run_ticks(session, periodic_sine(-18.0), seconds=3.0)

    assert readings[0].angle == -25.0
    assert readings[0].vu == pytest.approx(0.0, abs=1e-6)
    assert readings[6].angle < 0.0
    angles = [r.angle for r in readings]
    assert all(b >= a for a, b in zip(angles, angles[1:]))
    assert readings[-1].angle == pytest.approx(8.0, abs=0.01)


def test_first_tick_does_not_move_needle(session):
    r = session.tick(periodic_sine(0.0), 123.456)
    assert r.angle == -25.0
    assert r.timestamp == 123.456


def test_silence_keeps_needle_at_rest(session):
    readings = run_ticks(session, np.zeros(WINDOW), seconds=1.0)
    assert all(r.angle == -25.0 for r in readings)
    assert not any(r.peak_active for r in readings)
    assert readings[-1].dbfs == pytest.approx(-100.0)


def test_hot_signal_lights_clip_lamp(session):
    readings = run_ticks(session, periodic_sine(-3.0), seconds=2.0)
    assert readings[-1].angle >= 23.0
    assert readings[-1].peak_active
    assert readings[-1].peak_intensity == 1.0
    assert not readings[10].peak_active


def test_lamp_fades_after_signal_drops(session):
    run_ticks(session, periodic_sine(-3.0), seconds=2.0)
    quiet = run_ticks(session, np.zeros(WINDOW), seconds=8.0, start=2.0)
    assert quiet[30].peak_active
    assert not quiet[-1].peak_active
    assert quiet[-1].peak_intensity == 0.0
    assert quiet[-1].angle == pytest.approx(-25.0, abs=0.01)


def test_missing_window_holds_reading_and_timing(mono_config, options):
    w = periodic_sine(-18.0)
    gapped = MeterSession(mono_config, options)
    steady = MeterSession(mono_config, options)
    gapped.start()
    steady.start()

    for s in (gapped, steady):
        s.tick(w, 0.0)
        s.tick(w, 1 / FPS)
    held = gapped.tick(None, 10.0)
    assert held is gapped.reading
    assert held.timestamp == 1 / FPS

    assert gapped.tick(w, 2 / FPS).angle == steady.tick(w, 2 / FPS).angle


def test_backwards_clock_counts_as_no_time(session):
    w = periodic_sine(-18.0)
    session.tick(w, 1.0)
    a = session.tick(w, 2.0).angle
    assert session.tick(w, 1.5).angle == a


def test_stopped_session_emits_nothing(session):
    last = run_ticks(session, periodic_sine(-18.0), seconds=1.0)[-1]
    session.stop()
    assert session.tick(periodic_sine(-18.0), 5.0) is None
    assert session.reading == last


def test_restart_resets_all_state(session):
    run_ticks(session, periodic_sine(-3.0), seconds=2.0)
    assert session.peak.last_clip_ms is not None

    session.stop()
    session.start()
    assert session.reading == REST_READING
    assert session.ballistics.level == 0.0
    assert session.peak.last_clip_ms is None
    assert session.ticks == 0

    r = session.tick(np.zeros(WINDOW), 100.0)
    assert r.angle == -25.0
    assert not r.peak_active


def test_reconfigure_rate_change_rebuilds(session, options):
    run_ticks(session, periodic_sine(-3.0), seconds=1.0)
    session.reconfigure(SamplingConfig.build(44100, options))
    assert session.config.sample_rate == 44100
    assert session.ballistics.level == 0.0
    assert session.reading == REST_READING


def test_reconfigure_reference_only_keeps_state(session):
    run_ticks(session, periodic_sine(-18.0), seconds=1.0)
    level = session.ballistics.level
    session.reconfigure(SamplingConfig.build(FS, MeterOptions(reference_level=-20.0)))
    assert session.config.reference_level == -20.0
    assert session.ballistics.level == level


# =============================================================================
# Stereo pair
# =============================================================================

def test_stereo_channels_are_metered_independently():
    meter = StereoMeter(FS, MeterOptions(reference_level=-18.0))
    meter.start()
    block = np.column_stack([periodic_sine(-18.0), np.zeros(WINDOW)])
    for i in range(int(3 * FPS)):
        out = meter.tick(block, i / FPS)
    assert out["L"].angle == pytest.approx(8.0, abs=0.01)
    assert out["R"].angle == -25.0


def test_mono_fold_of_stereo_adds_correction():
    meter = StereoMeter(FS, MeterOptions(reference_level=-18.0), mono=True, source_channels=2)
    meter.start()
    w = periodic_sine(-18.0)
    out = meter.tick(np.column_stack([w, w]), 0.0)
    assert list(out) == ["MONO"]
    assert out["MONO"].dbfs == pytest.approx(-14.2, abs=1e-5)


def test_outputs_stay_in_range_over_bursts():
    meter = StereoMeter(FS, MeterOptions(reference_level=-18.0))
    signal = stereo(square_bursts(fs=FS))
    peak_angle = -25.0
    for _, readings in simulate(meter, signal, fs=FS, fps=FPS):
        for r in readings.values():
            assert -25.0 <= r.angle <= 25.0
            assert 0.0 <= r.peak_intensity <= 1.0
            peak_angle = max(peak_angle, r.angle)
    assert peak_angle > -25.0
