import tempfile
import unittest
from pathlib import Path

from fastapi.testclient import TestClient

from tests.sample_data import DURATION_ONLY_CSV, PRICING_HTML, TRIPS_CSV
from velopass.data_sources import pricing_page
from velopass.errors import VelopassError
from velopass.main import app as fastapi_app

PRICING_URL = "https://divvybikes.com/pricing"


class DummyResp:
    def __init__(self, text, status_code=200):
        self.text = text
        self.status_code = status_code
        self.ok = status_code < 400


class TestApi(unittest.TestCase):
    def setUp(self):
        import velopass.api as api_mod
        from velopass.config import settings

        self.api_mod = api_mod
        self._orig_session = pricing_page.session
        self._orig_run_agent = api_mod.run_agent
        self._orig_api_key = settings.api_key
        self._orig_upload_dir = settings.upload_dir
        self._tmp = tempfile.TemporaryDirectory()
        settings.upload_dir = self._tmp.name
        pricing_page.session = type("S", (), {"get": lambda *a, **k: DummyResp(PRICING_HTML)})()
        self.client = TestClient(fastapi_app)

    def tearDown(self):
        from velopass.config import settings

        pricing_page.session = self._orig_session
        self.api_mod.run_agent = self._orig_run_agent
        settings.api_key = self._orig_api_key
        settings.upload_dir = self._orig_upload_dir
        self._tmp.cleanup()

    def _post(self, csv_text=TRIPS_CSV, pricing_url=PRICING_URL, headers=None, filename="trips.csv"):
        files = {"tripsFile": (filename, csv_text.encode("utf-8"), "text/csv")}
        data = {"pricingUrl": pricing_url} if pricing_url is not None else {}
        return self.client.post("/api/run-agent", files=files, data=data, headers=headers or {})

    def _uploads_left(self):
        return list(Path(self._tmp.name).iterdir())

    def test_health(self):
        resp = self.client.get("/api/health")
        self.assertEqual(resp.status_code, 200)
        self.assertTrue(resp.json()["success"])

    def test_unknown_route_returns_json_404(self):
        resp = self.client.get("/api/nope")
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.json(), {"success": False, "error": "Route not found."})

    def test_run_agent_success_removes_upload(self):
        resp = self._post()
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertTrue(body["success"])
        self.assertEqual(body["data"]["decision"], "membership")
        self.assertEqual(len(body["data"]["weekly_table"]), 2)
        self.assertEqual(body["data"]["timeline"][-1]["kind"], "Final Answer")
        self.assertEqual(self._uploads_left(), [])

    def test_missing_pricing_url_400(self):
        resp = self._post(pricing_url="  ")
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json(), {"success": False, "error": "Missing pricing URL."})
        self.assertEqual(self._uploads_left(), [])

    def test_missing_file_400(self):
        resp = self.client.post("/api/run-agent", data={"pricingUrl": PRICING_URL})
        self.assertEqual(resp.status_code, 400)
        self.assertFalse(resp.json()["success"])

    def test_schema_error_maps_to_422(self):
        resp = self._post(csv_text="station,capacity\nA,10\n")
        self.assertEqual(resp.status_code, 422)
        body = resp.json()
        self.assertFalse(body["success"])
        self.assertIn("duration column", body["error"])
        self.assertEqual(body["timeline"][-1]["kind"], "Final Answer")
        self.assertEqual(self._uploads_left(), [])

    def test_fetch_error_maps_to_502(self):
        pricing_page.session = type("S", (), {"get": lambda *a, **k: DummyResp("gone", 404)})()
        resp = self._post(csv_text=DURATION_ONLY_CSV)
        self.assertEqual(resp.status_code, 502)
        self.assertIn("404", resp.json()["error"])
        self.assertEqual(self._uploads_left(), [])

    def test_unexpected_failure_maps_to_500_and_still_cleans_up(self):
        seen = {}

        def exploding_run_agent(run_id, dataset_locator, pricing_url, **kwargs):
            seen["path"] = Path(dataset_locator)
            seen["existed"] = seen["path"].exists()
            raise VelopassError("engine on fire")

        self.api_mod.run_agent = exploding_run_agent
        resp = self._post(filename="trips.parquet")

        self.assertEqual(resp.status_code, 500)
        self.assertEqual(resp.json()["error"], "engine on fire")
        self.assertTrue(seen["existed"])
        self.assertEqual(seen["path"].suffix, ".parquet")
        self.assertFalse(seen["path"].exists())

    def test_requires_api_key_when_set(self):
        from velopass.config import settings

        settings.api_key = "sekret"

        missing = self._post()
        self.assertEqual(missing.status_code, 401)

        ok = self._post(headers={"X-API-Key": "sekret"})
        self.assertEqual(ok.status_code, 200)


if __name__ == "__main__":
    unittest.main()
