"""
Tests for the HTTP and websocket surface.
"""

import base64
import io
import time
from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from PIL import Image

import config


def _frame_data_url() -> str:
    buf = io.BytesIO()
    Image.new("RGB", (320, 240), (120, 120, 120)).save(buf, format="JPEG")
    return "data:image/jpeg;base64," + base64.b64encode(buf.getvalue()).decode()


def _gross(client, farmer="Ram Singh", plate="GJ01AB1234", gross="1500.00", **extra):
    return client.post("/api/weighments/gross", json={
        "farmer_name": farmer, "vehicle_plate": plate, "gross_weight": gross, **extra,
    })


class TestWeighmentApi:
    def test_gross_then_tare(self, client):
        r = _gross(client)
        assert r.status_code == 201
        txn = r.json()
        assert txn["status"] == "pending_tare"
        assert Decimal(txn["gross_weight"]) == Decimal("1500.00")
        assert txn["tare_weight"] is None and txn["net_weight"] is None

        r = client.post(f"/api/weighments/{txn['id']}/tare", json={"tare_weight": "800.00"})
        assert r.status_code == 200
        done = r.json()
        assert done["status"] == "completed"
        assert Decimal(done["net_weight"]) == Decimal("700.00")
        assert done["tare_datetime"] is not None

    def test_missing_farmer_is_422(self, client):
        r = _gross(client, farmer="")
        assert r.status_code == 422
        assert r.json()["error"] == "ValidationError"
        assert client.get("/api/weighments/pending").json() == []
        assert client.get("/api/farmers").json() == []

    def test_repeat_tare_is_409(self, client):
        txn_id = _gross(client).json()["id"]
        client.post(f"/api/weighments/{txn_id}/tare", json={"tare_weight": 800})
        r = client.post(f"/api/weighments/{txn_id}/tare", json={"tare_weight": 600})
        assert r.status_code == 409
        assert r.json()["error"] == "InvalidTransitionError"
        assert Decimal(client.get(f"/api/weighments/{txn_id}").json()["tare_weight"]) == Decimal("800.00")

    def test_tare_unknown_is_404(self, client):
        r = client.post("/api/weighments/424242/tare", json={"tare_weight": 800})
        assert r.status_code == 404

    def test_pending_and_completed(self, client):
        a = _gross(client).json()["id"]
        b = _gross(client, "Anita Devi", "MH12CD5678", "1800").json()["id"]
        client.post(f"/api/weighments/{a}/tare", json={"tare_weight": "800"})

        assert [p["id"] for p in client.get("/api/weighments/pending").json()] == [b]
        assert [t["id"] for t in client.get("/api/weighments/completed").json()] == [a]

    def test_terminal_frame_becomes_snapshot(self, client):
        txn = _gross(client, frame_data_url=_frame_data_url()).json()
        url = txn["weighment_snapshot_url"]
        assert url.startswith("http://testserver/media/snapshots/")

        r = client.get(url.replace("http://testserver", ""))
        assert r.status_code == 200
        assert r.content[:2] == b"\xff\xd8"

    def test_broken_frame_saves_without_snapshot(self, client):
        r = _gross(client, frame_data_url="data:image/jpeg;base64,bm90IGFuIGltYWdl")
        assert r.status_code == 201
        assert r.json()["weighment_snapshot_url"] is None

    def test_qrcode(self, client):
        txn_id = _gross(client).json()["id"]
        r = client.get(f"/api/weighments/{txn_id}/qrcode")
        assert r.status_code == 200
        assert r.headers["content-type"] == "image/png"
        assert client.get("/api/weighments/999/qrcode").status_code == 404


class TestIdentityApi:
    def test_farmer_suggestions_and_vehicle_lookup(self, client):
        _gross(client)
        _gross(client, "Ramesh Kumar", "GJ05XY0001")
        names = [f["name"] for f in client.get("/api/farmers", params={"q": "Ram"}).json()]
        assert names == ["Ram Singh", "Ramesh Kumar"]

        v = client.get("/api/vehicles/GJ01AB1234").json()
        assert v["farmer_name"] == "Ram Singh"
        assert client.get("/api/vehicles/XX00").status_code == 404


class TestPendingSocket:
    def test_worklist_pushed_on_connect_and_change(self, client):
        with client.websocket_connect("/ws/pending") as ws:
            assert ws.receive_json() == []

            txn_id = _gross(client).json()["id"]
            pushed = ws.receive_json()
            assert [p["id"] for p in pushed] == [txn_id]

            client.post(f"/api/weighments/{txn_id}/tare", json={"tare_weight": "800"})
            assert ws.receive_json() == []

    def test_disconnect_releases_subscription(self, client):
        with client.websocket_connect("/ws/pending") as ws:
            ws.receive_json()
            assert client.get("/api/health").json()["pending_subscribers"] == 1
        # the server notices the close on its next receive
        for _ in range(50):
            if client.get("/api/health").json()["pending_subscribers"] == 0:
                break
            time.sleep(0.02)
        assert client.get("/api/health").json()["pending_subscribers"] == 0


class TestStartup:
    def test_refuses_multiple_workers(self, monkeypatch):
        from app import on_startup

        monkeypatch.setattr(config, "WEB_CONCURRENCY", 2)
        with pytest.raises(RuntimeError, match="single service process"):
            on_startup()

    def test_timestamps_carry_utc_offset(self, client):
        txn = _gross(client).json()
        gross_at = datetime.fromisoformat(txn["gross_datetime"].replace("Z", "+00:00"))
        assert gross_at.utcoffset() == timedelta(0)
