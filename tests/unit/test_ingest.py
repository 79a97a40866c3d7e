import pytest

from gasnet_graph_api.errors import ValidationError
from gasnet_graph_api.executor import AccessMode
from gasnet_graph_api.ingest import IngestService, supersedes
from gasnet_graph_api.repository import NetworkRepository


class VersionedStore:
    """In-memory stand-in for keyed MERGE upserts."""

    def __init__(self):
        self.nodes = {}

    def __call__(self, query, params):
        key = tuple(sorted((k, v) for k, v in params.items() if k.startswith("k_")))
        if query.startswith("MATCH (x:"):
            return [self.nodes[key]] if key in self.nodes else []
        if query.startswith("MERGE (x:"):
            self.nodes[key] = params["props"]
        return []


def oac_row(posting, available=500, **overrides):
    row = {
        "pipelineCode": "ANR",
        "cycle": "Timely",
        "flowDate": "2025-11-01",
        "locationId": 100,
        "locPurpDesc": "MQ",
        "locQTI": "RPQ",
        "direction": "R",
        "flowIndicator": "R",
        "grossOrNet": "GROSS",
        "schedStatus": "FINAL",
        "itIndicator": "Y",
        "designCapacity": 1200,
        "operatingCapacity": 1000,
        "operationallyAvailableCapacity": available,
        "totalSchedQty": 1000 - available,
        "postingDatetime": posting,
    }
    row.update(overrides)
    return row


@pytest.fixture
def store():
    return VersionedStore()


@pytest.fixture
def service(fake_executor, store):
    fake_executor.handler = store
    return IngestService(fake_executor, NetworkRepository(fake_executor))


class TestSupersedes:
    def test_no_stored_version(self):
        assert supersedes("2025-11-01T08:00:00", None)

    def test_newer_and_equal_apply(self):
        assert supersedes("2025-11-01T09:00:00", "2025-11-01T08:00:00")
        assert supersedes("2025-11-01T08:00:00", "2025-11-01T08:00:00")

    def test_older_ignored(self):
        assert not supersedes("2025-11-01T07:59:59", "2025-11-01T08:00:00")

    def test_offsets_compared_as_instants(self):
        assert not supersedes("2025-11-01T03:00:00-05:00", "2025-11-01T08:30:00Z")


@pytest.mark.asyncio
class TestIngestOac:
    async def test_late_snapshot_is_ignored(self, service, store, fake_executor):
        first = await service.ingest_oac([oac_row("2025-11-01T10:00:00", available=300)])
        second = await service.ingest_oac([oac_row("2025-11-01T09:00:00", available=900)])

        assert first == {"applied": 1, "ignored": 0}
        assert second == {"applied": 0, "ignored": 1}
        (stored,) = store.nodes.values()
        assert stored["postingDatetime"] == "2025-11-01T10:00:00"
        assert stored["operationallyAvailableCapacity"] == 300
        assert fake_executor.sessions == [AccessMode.WRITE, AccessMode.WRITE]

    async def test_out_of_order_within_one_batch(self, service, store):
        result = await service.ingest_oac(
            [
                oac_row("2025-11-01T10:00:00", available=300),
                oac_row("2025-11-01T09:00:00", available=900),
                oac_row("2025-11-01T11:00:00Z", available=100),
            ]
        )

        assert result == {"applied": 2, "ignored": 1}
        (stored,) = store.nodes.values()
        assert stored["operationallyAvailableCapacity"] == 100
        assert stored["postingDatetime"] == "2025-11-01T11:00:00"

    async def test_equal_timestamp_reapplies(self, service, store):
        await service.ingest_oac([oac_row("2025-11-01T10:00:00", available=300)])
        result = await service.ingest_oac([oac_row("2025-11-01T10:00:00", available=300)])
        assert result == {"applied": 1, "ignored": 0}

    async def test_distinct_keys_are_distinct_snapshots(self, service, store):
        result = await service.ingest_oac(
            [oac_row("2025-11-01T10:00:00"), oac_row("2025-11-01T09:00:00", locQTI="DPQ")]
        )
        assert result == {"applied": 2, "ignored": 0}
        assert len(store.nodes) == 2

    async def test_applied_rows_are_linked_to_location(self, service, fake_executor):
        await service.ingest_oac([oac_row("2025-11-01T10:00:00")])
        (link,) = fake_executor.queries("HAS_AVAILABLE_CAPACITY")
        assert link[1]["k_locationId"] == "100"

    async def test_batch_validation_collects_every_row(self, service, fake_executor):
        bad = [
            oac_row("2025-11-01T10:00:00"),
            oac_row("2025-11-01T10:00:00", grossOrNet="BOTH", operatingCapacity=-1),
            oac_row("not-a-date", flowDate="11/01/2025"),
        ]
        with pytest.raises(ValidationError) as excinfo:
            await service.ingest_oac(bad)

        errors = excinfo.value.details["errors"]
        assert any(e.startswith("Row 1: Invalid grossOrNet") for e in errors)
        assert "Row 1: operatingCapacity cannot be negative" in errors
        assert "Row 2: flowDate must be YYYY-MM-DD" in errors
        assert fake_executor.calls == []

    async def test_unparseable_posting_rejected_before_any_write(self, service, fake_executor):
        rows = [oac_row("2025-11-01T10:00:00"), oac_row("yesterday-ish")]
        with pytest.raises(ValidationError) as excinfo:
            await service.ingest_oac(rows)

        assert "Row 1: postingDatetime must be an ISO datetime string" in excinfo.value.details["errors"]
        assert fake_executor.sessions == []

    async def test_impossible_flow_date_rejected(self, service, fake_executor):
        with pytest.raises(ValidationError) as excinfo:
            await service.ingest_oac([oac_row("2025-11-01T10:00:00", flowDate="2025-13-45")])

        assert excinfo.value.details["errors"] == ["Row 0: flowDate must be YYYY-MM-DD"]
        assert fake_executor.sessions == []

    async def test_falsy_key_values_stay_distinct(self, service, store):
        result = await service.ingest_oac(
            [oac_row("2025-11-01T10:00:00", locPurpDesc=0), oac_row("2025-11-01T10:00:00", locPurpDesc="")]
        )
        assert result == {"applied": 2, "ignored": 0}
        assert len(store.nodes) == 2
        assert {repr(dict(key)["k_locPurpDesc"]) for key in store.nodes} == {"0", "''"}


def notice(modified, **overrides):
    row = {
        "pipelineCode": "ANR",
        "noticeId": 42,
        "noticeType": "Critical",
        "subject": "Compressor outage",
        "effectiveDatetime": "2025-11-01T00:00:00",
        "endDatetime": "2025-11-03T00:00:00",
        "lastModifiedDatetime": modified,
    }
    row.update(overrides)
    return row


@pytest.mark.asyncio
class TestUpsertNotices:
    async def test_latest_modification_wins(self, service, store):
        await service.upsert_notices([notice("2025-11-01T10:00:00", subject="v2")])
        result = await service.upsert_notices([notice("2025-11-01T09:00:00", subject="v1")])

        assert result == {"applied": 0, "ignored": 1}
        (stored,) = store.nodes.values()
        assert stored["subject"] == "v2"
        assert stored["noticeId"] == "42"

    async def test_missing_fields_reported_per_row(self, service):
        with pytest.raises(ValidationError) as excinfo:
            await service.upsert_notices([notice("2025-11-01T10:00:00"), {"pipelineCode": "ANR"}])
        assert excinfo.value.details["errors"][0] == "Row 1: noticeId is required"

    async def test_end_before_start_rejected(self, service):
        with pytest.raises(ValidationError):
            await service.upsert_notices([notice("2025-11-01T10:00:00", endDatetime="2025-10-01T00:00:00")])


@pytest.mark.asyncio
class TestUpsertPrices:
    async def test_unknown_symbols_rejected_per_row(self, fake_executor):
        def handler(query, params):
            if 'MATCH (s:"Symbol")\nWHERE' in query:
                return [{"code": "HH"}]
            return []

        fake_executor.handler = handler
        service = IngestService(fake_executor, NetworkRepository(fake_executor))

        result = await service.upsert_prices(
            [
                {"symbol": "HH", "tradingDay": "2025-11-01", "settle": 3.41},
                {"symbol": "ZZ", "tradingDay": "2025-11-01", "settle": 1.0},
                {"symbol": "HH", "tradingDay": "Nov 2", "settle": 3.5},
            ]
        )

        assert result["applied"] == 1
        assert [r["row"] for r in result["rejected"]] == [1, 2]
        assert result["rejected"][0]["error"] == "Unknown symbol 'ZZ'"
        (write,) = fake_executor.queries('"HAS_TRADING_DAY"')
        assert write[1]["day"] == "2025-11-01"
        assert fake_executor.sessions == [AccessMode.WRITE]

    async def test_non_string_symbol_rejected_per_row(self, fake_executor):
        fake_executor.handler = lambda q, p: [{"code": "HH"}] if 'WHERE s."code"' in q else []
        service = IngestService(fake_executor, NetworkRepository(fake_executor))

        result = await service.upsert_prices(
            [
                {"symbol": ["HH"], "tradingDay": "2025-11-01", "settle": 3.41},
                {"symbol": "HH", "tradingDay": "2025-11-01", "settle": 3.41},
            ]
        )

        assert result["applied"] == 1
        assert result["rejected"] == [{"row": 0, "symbol": ["HH"], "error": "symbol must be a string"}]
        (lookup,) = fake_executor.queries('WHERE s."code"')
        assert lookup[1]["codes"] == ["HH"]


@pytest.mark.asyncio
class TestReferenceWrites:
    async def test_pipeline_code_mismatch(self, service, fake_executor):
        with pytest.raises(ValidationError, match="does not match"):
            await service.upsert_pipeline("ANR", {"code": "TGP", "name": "x", "operator": "y", "tspId": "1"})
        assert fake_executor.calls == []

    async def test_pipeline_upsert(self, fake_executor):
        fake_executor.handler = lambda q, p: [{"pipeline": {"code": p["code"], "name": p["name"]}}]
        service = IngestService(fake_executor, NetworkRepository(fake_executor))

        pipeline = await service.upsert_pipeline(
            "ANR", {"name": "ANR Pipeline", "operator": "TC Energy", "tspId": "006958581"}
        )

        assert pipeline == {"code": "ANR", "name": "ANR Pipeline"}
        assert fake_executor.calls[0][2] is AccessMode.WRITE

    async def test_location_direction_normalized(self, fake_executor):
        def handler(query, params):
            if 'DISTINCT l."zone"' in query:
                return [{"zone": "ML1"}, {"zone": "ML2"}]
            if query.startswith("MERGE"):
                return [{"location": params["props"]}]
            return []

        fake_executor.handler = handler
        service = IngestService(fake_executor, NetworkRepository(fake_executor))

        location = await service.upsert_location(
            "ANR",
            "100",
            {
                "name": "Joliet",
                "direction": "Receipt",
                "zone": "ML1",
                "position": {"latitude": 41.5, "longitude": -88.1},
                "effectiveDate": "2025-01-01",
            },
        )

        assert location["direction"] == "R"
        assert location["locationId"] == "100"
        assert location["pipelineCode"] == "ANR"

    async def test_location_unknown_zone(self, fake_executor):
        fake_executor.handler = lambda q, p: [{"zone": "ML1"}] if "zone" in q else []
        service = IngestService(fake_executor, NetworkRepository(fake_executor))

        with pytest.raises(ValidationError) as excinfo:
            await service.upsert_location("ANR", "100", {"name": "Joliet", "direction": "D", "zone": "ML9"})
        assert excinfo.value.details == {"allowedZonesSample": ["ML1"]}

    @pytest.mark.parametrize(
        "body",
        [
            {"name": "Joliet", "direction": "Sideways"},
            {"name": "Joliet", "direction": "R", "position": {"latitude": 10, "longitude": -88}},
            {"name": "Joliet", "direction": "R", "position": {"latitude": 41, "longitude": 2}},
            {"direction": "R"},
        ],
    )
    async def test_location_validation(self, service, body):
        with pytest.raises(ValidationError):
            await service.upsert_location("ANR", "100", body)

    async def test_constraint_linked_to_location(self, fake_executor):
        def handler(query, params):
            if query.startswith('CREATE (c:"Constraint"'):
                return [{"constraint": params["props"]}]
            return []

        fake_executor.handler = handler
        service = IngestService(fake_executor, NetworkRepository(fake_executor))

        constraint = await service.create_constraint(
            {
                "reason": "Maintenance",
                "kind": "Outage",
                "start": "2025-11-01T06:00:00Z",
                "end": "2025-11-01T12:00:00Z",
                "percent": 50,
                "locationName": "Joliet",
            }
        )

        assert constraint["effectiveDatetime"] == "2025-11-01T06:00:00"
        assert constraint["endDatetime"] == "2025-11-01T12:00:00"
        assert constraint["constraintId"]
        (link,) = fake_executor.queries('"HAS_CONSTRAINT"')
        assert link[1] == {"name": "Joliet", "id": constraint["constraintId"]}
        assert fake_executor.sessions == [AccessMode.WRITE]

    async def test_constraint_end_before_start(self, service):
        with pytest.raises(ValidationError, match="must not precede"):
            await service.create_constraint(
                {"reason": "r", "kind": "k", "start": "2025-11-02T00:00:00", "end": "2025-11-01T00:00:00"}
            )

    async def test_constraint_requires_fields(self, service):
        with pytest.raises(ValidationError):
            await service.create_constraint({"reason": "r"})
