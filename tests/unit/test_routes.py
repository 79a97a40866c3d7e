import pytest
from fastapi.testclient import TestClient

from gasnet_graph_api.errors import QueryExecutionError
from gasnet_graph_api.server import create_app
from gasnet_graph_api.settings import Settings


def client_for(executor, **overrides):
    settings = Settings(allowed_hosts=["*"], **overrides)
    return TestClient(create_app(executor, settings))


@pytest.fixture
def client(fake_executor):
    return client_for(fake_executor)


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_openapi_served(client):
    assert "/path/details" in client.get("/openapi.json").json()["paths"]


class TestErrorMapping:
    def test_missing_path_is_404_not_500(self, client):
        response = client.get("/path", params={"from": "100", "to": "999"})
        assert response.status_code == 404
        assert response.json() == {"message": "No path found"}

    def test_missing_endpoints_is_400(self, client, fake_executor):
        response = client.get("/path", params={"from": "100"})
        assert response.status_code == 400
        assert response.json() == {"error": "from and to are required query params"}
        assert fake_executor.calls == []

    def test_invalid_max_hops(self, client):
        response = client.get("/path", params={"from": "1", "to": "2", "maxHops": "lots"})
        assert response.status_code == 400

    def test_invalid_instant_is_400_without_querying(self, client, fake_executor):
        response = client.get("/path", params={"from": "100", "to": "200", "at": "not-a-date"})
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid ISO-8601 datetime: 'not-a-date'"}
        assert fake_executor.calls == []

    def test_database_failure_is_opaque_500(self, fake_executor):
        def broken(query, params):
            raise QueryExecutionError("Graph query failed")

        fake_executor.handler = broken
        response = client_for(fake_executor).get("/pipelines")

        assert response.status_code == 500
        assert response.json() == {"error": "Graph query failed"}

    def test_malformed_date_path(self, client):
        response = client.get("/noms/ANR/11-01-2025")
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid request"

    def test_empty_constrained_noms_is_404(self, client):
        response = client.get("/notices/constrained-noms/2025-11-01")
        assert response.status_code == 404
        assert response.json() == {"message": "Not found"}

    def test_empty_collection_is_200(self, client):
        response = client.get("/notices/ANR")
        assert response.status_code == 200
        assert response.json()["notices"] == []


class TestCypherRead:
    @pytest.mark.parametrize(
        "query",
        ["MATCH (n) SET n.x = 1 RETURN n", "match (n) set n.x = 1 return n", "MATCH (n)\nSeT n.x = 1 RETURN n"],
    )
    def test_write_rejected_without_touching_database(self, client, fake_executor, query):
        response = client.post("/cypher/read", json={"query": query})
        assert response.status_code == 400
        assert response.json() == {"error": "Write operations are not allowed in /cypher/read"}
        assert fake_executor.calls == []

    def test_read_runs_quoted_with_params(self, client, fake_executor):
        fake_executor.handler = lambda q, p: [{"name": "Joliet"}]
        response = client.post(
            "/cypher/read",
            json={"query": "MATCH (l:Location) WHERE l.locationId = %(id)s RETURN l.name AS name", "params": {"id": "100"}},
        )

        assert response.status_code == 200
        assert response.json() == {"count": 1, "records": [{"name": "Joliet"}]}
        query, params, mode = fake_executor.calls[0]
        assert 'l."locationId"' in query and ':"Location"' in query
        assert params == {"id": "100"}
        assert mode.value == "READ"

    def test_query_required(self, client):
        response = client.post("/cypher/read", json={"params": {}})
        assert response.status_code == 400
        assert response.json() == {"error": "query is required"}


class TestWritesDisabled:
    @pytest.fixture
    def read_only_client(self, fake_executor):
        return client_for(fake_executor, enable_writes=False)

    @pytest.mark.parametrize(
        "method, url, body",
        [
            ("put", "/pipelines/ANR", {"bogus": True}),
            ("put", "/locations/ANR/100", "not an object"),
            ("post", "/notices", []),
            ("post", "/capacity/oac", [{"pipelineCode": "ANR"}]),
            ("post", "/prices", {}),
            ("post", "/constraints", {}),
        ],
    )
    def test_writes_forbidden_before_validation(self, read_only_client, fake_executor, method, url, body):
        response = getattr(read_only_client, method)(url, json=body)

        assert response.status_code == 403
        assert "GASNET_ENABLE_WRITES" in response.json()["error"]
        assert fake_executor.calls == []

    def test_patch_forbidden(self, read_only_client):
        assert read_only_client.patch("/constraints/set-createdAt-from-start").status_code == 403

    def test_reads_still_allowed(self, read_only_client):
        assert read_only_client.get("/pipelines").status_code == 200


class TestListings:
    def test_paging_defaults_for_junk(self, client, fake_executor):
        response = client.get("/locations/ANR", params={"limit": "abc", "skip": "-1"})

        assert response.status_code == 200
        assert response.json() == {"count": 0, "pipeline": "ANR", "locations": [], "page": {"skip": 0, "limit": 100}}
        assert fake_executor.calls[0][0].endswith("SKIP 0\nLIMIT 100")

    def test_notices_as_of_and_range_are_exclusive(self, client):
        response = client.get(
            "/notices/ANR", params={"asOf": "2025-11-01T00:00:00", "startDate": "2025-11-01", "endDate": "2025-11-02"}
        )
        assert response.status_code == 400

    def test_pipelines(self, client, fake_executor):
        fake_executor.handler = lambda q, p: [{"code": "ANR", "name": "ANR Pipeline", "operator": "TC", "tspId": "1"}]
        assert client.get("/pipelines").json()["count"] == 1

    def test_capacity_endpoint(self, client, fake_executor):
        fake_executor.handler = lambda q, p: [
            {"capacity": {"postingDatetime": "2025-11-01T08:00:00", "operatingCapacity": 200,
                          "operationallyAvailableCapacity": 50, "totalSchedQty": 150}}
        ]
        response = client.get("/capacity/ANR/100/2025-11-01", params={"quantityType": "DPQ"})

        body = response.json()
        assert response.status_code == 200
        assert body["quantityType"] == "DPQ"
        assert body["availablePercent"] == 25
        assert body["utilizationPercent"] == 75

    def test_capacity_rejects_unknown_quantity_type(self, client):
        assert client.get("/capacity/ANR/100/2025-11-01", params={"quantityType": "XYZ"}).status_code == 400

    def test_firm_transport_enrich_needs_a_day(self, client):
        response = client.get("/volumes/firm-transport/ANR", params={"enrich": "true"})
        assert response.status_code == 400


class TestWrites:
    def test_oac_ingest(self, client, fake_executor):
        row = {
            "pipelineCode": "ANR", "locationId": "100", "cycle": "Timely", "locQTI": "RPQ",
            "flowDate": "2025-11-01", "postingDatetime": "2025-11-01T08:00:00",
            "designCapacity": 10, "operatingCapacity": 10, "operationallyAvailableCapacity": 5, "totalSchedQty": 5,
        }
        response = client.post("/capacity/oac", json=[row])
        assert response.status_code == 200
        assert response.json() == {"applied": 1, "ignored": 0}

    def test_oac_validation_error_body(self, client):
        response = client.post("/capacity/oac", json=[{"pipelineCode": "ANR"}])
        body = response.json()
        assert response.status_code == 400
        assert body["error"] == "OAC batch validation failed"
        assert "Row 0: locationId is required" in body["errors"]

    def test_constraint_created(self, client, fake_executor):
        fake_executor.handler = lambda q, p: [{"constraint": p["props"]}] if q.startswith("CREATE") else []
        response = client.post("/constraints", json={"reason": "r", "kind": "Outage", "start": "2025-11-01T00:00:00"})
        assert response.status_code == 201
        assert response.json()["constraint"]["kind"] == "Outage"
