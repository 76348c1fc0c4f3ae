import pytest
from fastapi.testclient import TestClient

from api import create_app
from meter_engine.engine import MeterEngine
from meter_engine.signals import sine, stereo

FS = 16000


@pytest.fixture
def engine(buffer_factory):
    eng = MeterEngine(
        {"sample_rate": FS, "channels": 2, "layout": "stereo", "fps": 50},
        provider_factory=buffer_factory(stereo(sine(-18.0, seconds=2.0, fs=FS))),
    )
    eng.start(threaded=False)
    yield eng
    eng.stop()


@pytest.fixture
def client(engine):
    return TestClient(create_app(engine))


def test_vu_readings(client):
    r = client.get("/vu")
    assert r.status_code == 200
    body = r.json()
    assert set(body) == {"L", "R"}
    assert body["L"]["angle"] == -25.0
    assert body["L"]["peak_active"] is False


def test_vu_after_ticks(client, engine):
    for i in range(60):
        engine.tick_once(i / 50)
    body = client.get("/vu").json()
    assert body["L"]["angle"] > -25.0
    assert body["L"]["vu"] == pytest.approx(0.0, abs=0.01)


def test_scale(client):
    body = client.get("/scale").json()
    assert body["angle_range"] == [-25.0, 25.0]
    assert len(body["marks"]) == 12
    assert len(body["labels"]) == 11


def test_status(client):
    body = client.get("/status").json()
    assert body["sample_rate"] == FS
    assert body["reference_level"] == -18.0
    assert body["layout"] == "stereo"


def test_config_rejected_with_400(client, engine):
    r = client.post("/config", json={"sample_rate": FS, "channels": 1, "layout": "stereo"})
    assert r.status_code == 400
    assert engine.layout == "stereo"


def test_config_applied(client, engine):
    r = client.post("/config", json={
        "sample_rate": FS,
        "channels": 2,
        "layout": "mono",
        "fps": 50,
        "meter": {"reference_level": -20.0, "peak_hold_ms": 500},
    })
    assert r.status_code == 200
    assert engine.layout == "mono"
    assert engine.options.reference_level == -20.0
    assert engine.options.peak_hold_ms == 500.0
    assert set(client.get("/vu").json()) == {"MONO"}


def test_config_reference_defaults_to_stereo_level(client, engine):
    r = client.post("/config", json={"sample_rate": FS, "channels": 2, "fps": 50})
    assert r.status_code == 200
    assert engine.options.reference_level == -18.0


def test_self_check(client):
    r = client.get("/self-check")
    assert r.status_code == 200
    assert r.json()["reference_ok"] is True
