from __future__ import annotations

import importlib
import os
import sys
import unittest
from pathlib import Path

import httpx
from fastapi import FastAPI
from fastapi.testclient import TestClient

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))


class DynamicQueryApiTests(unittest.TestCase):
    def setUp(self):
        self._env_backup = {
            "FRONTEND_ORIGINS": os.environ.get("FRONTEND_ORIGINS"),
            "QUERY_BACKEND_URL": os.environ.get("QUERY_BACKEND_URL"),
            "URL_DATA_CRUD": os.environ.get("URL_DATA_CRUD"),
        }
        os.environ["FRONTEND_ORIGINS"] = "http://localhost:5173"
        os.environ.pop("QUERY_BACKEND_URL", None)
        os.environ.pop("URL_DATA_CRUD", None)

        import config
        import query_client
        import dynamic_query_api

        importlib.reload(config)
        importlib.reload(query_client)
        importlib.reload(dynamic_query_api)

        self.query_client = query_client
        self.api = dynamic_query_api
        self.upstream_requests: list[httpx.Request] = []

        app = FastAPI()
        app.include_router(dynamic_query_api.router)
        self.app = app
        self.client = TestClient(app)

    def tearDown(self):
        self.app.dependency_overrides.clear()
        for key, value in self._env_backup.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value

    def _use_upstream(self, response: httpx.Response) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            self.upstream_requests.append(request)
            return response

        transport = httpx.MockTransport(handler)
        self.app.dependency_overrides[self.api.get_query_client] = lambda: self.query_client.DynamicQueryClient(
            base_url="http://backend.test", transport=transport
        )

    def test_compile(self):
        response = self.client.post(
            "/api/dynamic-query/compile",
            json={
                "nodes": [{"id": "n1", "schemaId": "Customer"}, {"id": "n2", "schemaId": "Order"}],
                "edges": [{"source": "n1", "target": "n2", "relation": "placed", "optional": False}],
            },
        )
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["patterns"][1]["edge"], "placed")
        self.assertEqual(payload["nodeRefs"]["n2"], {"schemaId": "Order"})

    def test_compile_rejects_cycle(self):
        response = self.client.post(
            "/api/dynamic-query/compile",
            json={
                "nodes": [{"id": "a", "schemaId": "A"}, {"id": "b", "schemaId": "B"}],
                "edges": [
                    {"source": "a", "target": "b", "relation": "r"},
                    {"source": "b", "target": "a", "relation": "r"},
                ],
            },
        )
        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["detail"]["code"], "cycle")

    def test_expand(self):
        response = self.client.post(
            "/api/dynamic-query/expand",
            json={
                "patterns": [
                    {"from": {"schemaId": "Customer"}},
                    {"from": {"schemaId": "Customer"}, "to": {"schemaId": "Order"}, "edge": "placed", "optional": True},
                ],
                "schemas": [{"id": "Customer", "label": "Customer"}],
            },
        )
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(len(payload["nodes"]), 2)
        self.assertEqual(payload["edges"][0]["relation"], "placed")
        self.assertEqual(
            {node["schemaId"]: node["placeholder"] for node in payload["nodes"]},
            {"Customer": False, "Order": True},
        )

    def test_expand_rejects_broken_patterns(self):
        response = self.client.post(
            "/api/dynamic-query/expand",
            json={"patterns": [{"from": {"schemaId": "Order"}, "to": {"schemaId": "Item"}, "edge": "has"}]},
        )
        self.assertEqual(response.status_code, 422)

    def test_load(self):
        response = self.client.post(
            "/api/dynamic-query/load",
            json={"metadata": {"columns": [{"fieldId": "name", "schemaId": "Customer", "selectOrder": 4}]}},
        )
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["config"]["columns"][0]["selectOrder"], 1)
        self.assertEqual(payload["graph"], {"nodes": [], "edges": []})

    def test_columns(self):
        response = self.client.post(
            "/api/dynamic-query/columns",
            json={
                "columns": [{"fieldId": "name", "schemaId": "Customer", "selectOrder": 1}],
                "operations": [
                    {"op": "add", "fieldId": "total", "schemaId": "Order"},
                    {"op": "setGroup", "order": ["total"]},
                ],
            },
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json()["columns"],
            [
                {"fieldId": "name", "schemaId": "Customer", "selectOrder": 1},
                {"fieldId": "total", "schemaId": "Order", "selectOrder": 2, "groupOrder": 0},
            ],
        )

    def test_columns_rejects_bad_operation(self):
        response = self.client.post(
            "/api/dynamic-query/columns",
            json={"columns": [], "operations": [{"op": "remove", "fieldId": "missing"}]},
        )
        self.assertEqual(response.status_code, 422)

    def test_columns_rejects_malformed_reference(self):
        response = self.client.post(
            "/api/dynamic-query/columns",
            json={
                "columns": [{"fieldId": "name", "schemaId": "Customer", "selectOrder": 1}],
                "operations": [{"op": "setGroup", "order": [["Customer", "name", "x"]]}],
            },
        )
        self.assertEqual(response.status_code, 422)

    def test_run_with_malformed_schemas_still_shapes_result(self):
        self._use_upstream(
            httpx.Response(
                200,
                json={
                    "schema": "customer",
                    "schemas": [{"id": "customer", "fields": None}],
                    "data": [{"name": "Acme", "children": [{"schema": 5, "data": []}]}],
                },
            )
        )
        response = self.client.post("/api/dynamic-query/q-1/run")
        self.assertEqual(response.status_code, 200)
        child = response.json()["rows"][0]["children"][0]
        self.assertFalse(child["found"])
        self.assertEqual(child["label"], "schema not found")

    def test_flat_results(self):
        response = self.client.post(
            "/api/dynamic-query/results/flat",
            json={
                "payload": {"data.data.2.name": "B", "data.data.10.name": "C", "data.data.0.name": "A"},
                "schemas": [{"id": "Customer", "fields": [{"id": "name"}]}],
            },
        )
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual([row["rootIndex"] for row in payload["rows"]], [0, 2, 10])
        self.assertEqual(payload["columnGroups"][0]["schema"]["id"], "Customer")

    def test_nested_results(self):
        response = self.client.post(
            "/api/dynamic-query/results/nested",
            json={"payload": {"schema": "customer", "data": [{"name": "Acme"}]}, "expandDepth": 0},
        )
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertTrue(payload["hasData"])
        self.assertTrue(payload["schema"]["placeholder"])

    def test_run_without_backend_is_500(self):
        response = self.client.post("/api/dynamic-query/q-1/run")
        self.assertEqual(response.status_code, 500)

    def test_run_flattened(self):
        self._use_upstream(
            httpx.Response(200, json={"success": True, "data": {"data.data.0.name": "Acme", "data.data.0.id": "c1"}})
        )
        response = self.client.post(
            "/api/dynamic-query/q-1/run?flatten=true&companyIds=c1,c2",
            headers={"Authorization": "Bearer token"},
            json={"pagination": {"limit": 5}},
        )
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual([column["path"] for column in payload["columns"]], ["name"])

        upstream = self.upstream_requests[0]
        self.assertEqual(upstream.url.params["flatten"], "true")
        self.assertEqual(upstream.url.params["companyIds"], "c1,c2")
        self.assertEqual(upstream.headers["authorization"], "Bearer token")

    def test_run_nested(self):
        self._use_upstream(
            httpx.Response(
                200,
                json={"schema": "customer", "schemas": [{"id": "customer"}], "data": [{"name": "Acme"}]},
            )
        )
        response = self.client.post("/api/dynamic-query/q-1/run")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["schema"]["id"], "customer")

    def test_app_health_and_routes(self):
        import main

        importlib.reload(main)
        client = TestClient(main.app)
        response = client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "healthy")
        paths = {route.path for route in main.app.routes}
        self.assertIn("/api/dynamic-query/compile", paths)

    def test_run_upstream_failure_is_502(self):
        self._use_upstream(httpx.Response(500, json={"error": "boom"}))
        response = self.client.post("/api/dynamic-query/q-1/run")
        self.assertEqual(response.status_code, 502)
        detail = response.json()["detail"]
        self.assertEqual(detail["upstreamStatus"], 500)
        self.assertEqual(detail["upstream"], {"error": "boom"})


if __name__ == "__main__":
    unittest.main()
