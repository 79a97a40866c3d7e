"""REST endpoints for the gas network graph."""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Path, Query, Request
from fastapi.responses import JSONResponse
from psycopg.types.json import Jsonb

from .auth import api_key_gate
from .capacity import CapacityAggregator, QuantityType
from .enrichment import ContractEnricher
from .errors import NotFoundError, QueryExecutionError, ValidationError, WritesDisabledError
from .executor import GraphExecutor
from .ingest import IngestService
from .nominations import NominationImpact
from .paths import LocationRef, PathResolver
from .repository import NetworkRepository
from .settings import Settings
from .utils import _quote_identifiers
from .validators import check_read_only_query, validate_page

logger = logging.getLogger("gasnet_graph_api")

DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"

health_router = APIRouter(tags=["System"])
router = APIRouter(dependencies=[Depends(api_key_gate)])


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_executor(request: Request) -> GraphExecutor:
    return request.app.state.executor


def get_repository(request: Request) -> NetworkRepository:
    return request.app.state.repository


def get_capacity(request: Request) -> CapacityAggregator:
    return request.app.state.capacity


def get_resolver(request: Request) -> PathResolver:
    return request.app.state.resolver


def get_nominations(request: Request) -> NominationImpact:
    return request.app.state.nominations


def get_enricher(request: Request) -> ContractEnricher:
    return request.app.state.enricher


def get_ingest(request: Request) -> IngestService:
    return request.app.state.ingest


def require_writes(settings: Settings = Depends(get_settings)) -> None:
    if not settings.enable_writes:
        raise WritesDisabledError()


def _object_body(body: Any) -> Dict[str, Any]:
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


def _batch_body(body: Any) -> list:
    if isinstance(body, dict):
        body = [body]
    if not isinstance(body, list) or not body:
        raise ValidationError("Request body must be a non-empty JSON array")
    return body


# ---- System ----


@health_router.get("/health")
async def health(executor: GraphExecutor = Depends(get_executor)):
    try:
        await executor.ping()
    except QueryExecutionError as e:
        return JSONResponse(status_code=500, content={"status": "error", "error": e.message})
    return {"status": "ok"}


# ---- Reference data ----


@router.get("/pipelines", tags=["Reference Data"])
async def list_pipelines(repository: NetworkRepository = Depends(get_repository)):
    pipelines = await repository.list_pipelines()
    return {"count": len(pipelines), "pipelines": pipelines}


@router.put("/pipelines/{code}", tags=["Reference Data"], dependencies=[Depends(require_writes)])
async def upsert_pipeline(
    code: str,
    body: Any = Body(...),
    ingest: IngestService = Depends(get_ingest),
):
    return await ingest.upsert_pipeline(code, _object_body(body))


@router.get("/locations/{pipeline}", tags=["Reference Data"])
async def list_locations(
    pipeline: str,
    limit: Optional[str] = Query(None),
    skip: Optional[str] = Query(None),
    repository: NetworkRepository = Depends(get_repository),
):
    page = validate_page(limit, skip)
    locations = await repository.list_locations(pipeline, **page)
    return {"count": len(locations), "pipeline": pipeline, "locations": locations, "page": page}


@router.put(
    "/locations/{pipeline}/{locationId}",
    tags=["Reference Data"],
    dependencies=[Depends(require_writes)],
)
async def upsert_location(
    pipeline: str,
    location_id: str = Path(..., alias="locationId"),
    body: Any = Body(...),
    ingest: IngestService = Depends(get_ingest),
):
    return await ingest.upsert_location(pipeline, location_id, _object_body(body))


@router.get("/pipeline-segments/{pipeline}", tags=["Reference Data"])
async def list_segments(
    pipeline: str,
    limit: Optional[str] = Query(None),
    skip: Optional[str] = Query(None),
    repository: NetworkRepository = Depends(get_repository),
):
    page = validate_page(limit, skip)
    segments = await repository.list_segments(pipeline, **page)
    return {"pipeline": pipeline, "count": len(segments), "segments": segments, "page": page}


# ---- Nominations ----


@router.get("/noms/{pipeline}/{flowDate}", tags=["Nominations"])
async def nominations_for_day(
    pipeline: str,
    flow_date: str = Path(..., alias="flowDate", pattern=DATE_PATTERN),
    nominations: NominationImpact = Depends(get_nominations),
):
    rows = await nominations.nominations_for_day(pipeline, flow_date)
    return {"pipeline": pipeline, "flowDate": flow_date, "count": len(rows), "nominations": rows}


@router.get("/notices/constrained-noms/{flowDate}", tags=["Nominations"])
async def constrained_nominations(
    flow_date: str = Path(..., alias="flowDate", pattern=DATE_PATTERN),
    nominations: NominationImpact = Depends(get_nominations),
):
    rows = await nominations.constrained_nominations(flow_date)
    if not rows:
        raise NotFoundError("Not found")
    return {"flowDate": flow_date, "count": len(rows), "nominations": rows}


@router.get("/notices/constrained-noms/{locationName}/{beforeDate}", tags=["Nominations"])
async def constrained_nominations_at(
    location_name: str = Path(..., alias="locationName"),
    before_date: str = Path(..., alias="beforeDate", pattern=DATE_PATTERN),
    pipeline: Optional[str] = Query(None),
    nominations: NominationImpact = Depends(get_nominations),
):
    if not location_name.strip():
        raise ValidationError("location-name is required")
    rows = await nominations.constrained_nominations_at(location_name, before_date, pipeline)
    if not rows:
        raise NotFoundError("Not found")
    return {"beforeDate": before_date, "count": len(rows), "nominations": rows}


# ---- Notices and constraints ----


@router.get("/notices/constraints/{pipeline}", tags=["Notices"])
async def list_constraints(
    pipeline: str,
    location: Optional[str] = Query(None),
    as_of: Optional[str] = Query(None, alias="asOf"),
    limit: Optional[str] = Query(None),
    skip: Optional[str] = Query(None),
    repository: NetworkRepository = Depends(get_repository),
):
    page = validate_page(limit, skip)
    constraints = await repository.list_constraints(pipeline, location=location, as_of=as_of, **page)
    return {
        "pipeline": pipeline,
        "location": location,
        "asOf": as_of,
        "count": len(constraints),
        "constraints": constraints,
        "page": page,
    }


@router.get("/notices/{pipeline}", tags=["Notices"])
async def list_notices(
    pipeline: str,
    notice_type: Optional[str] = Query(None, alias="noticeType"),
    as_of: Optional[str] = Query(None, alias="asOf"),
    start_date: Optional[str] = Query(None, alias="startDate", pattern=DATE_PATTERN),
    end_date: Optional[str] = Query(None, alias="endDate", pattern=DATE_PATTERN),
    limit: Optional[str] = Query(None),
    skip: Optional[str] = Query(None),
    repository: NetworkRepository = Depends(get_repository),
):
    page = validate_page(limit, skip)
    notices = await repository.list_notices(
        pipeline,
        notice_type=notice_type,
        as_of=as_of,
        start_date=start_date,
        end_date=end_date,
        **page,
    )
    return {
        "pipeline": pipeline,
        "noticeType": notice_type,
        "asOf": as_of,
        "count": len(notices),
        "notices": notices,
        "page": page,
    }


@router.post("/notices", tags=["Notices"], dependencies=[Depends(require_writes)])
async def upsert_notices(body: Any = Body(...), ingest: IngestService = Depends(get_ingest)):
    return await ingest.upsert_notices(_batch_body(body))


@router.post("/constraints", tags=["Notices"], status_code=201, dependencies=[Depends(require_writes)])
async def create_constraint(body: Any = Body(...), ingest: IngestService = Depends(get_ingest)):
    constraint = await ingest.create_constraint(_object_body(body))
    return {"constraint": constraint}


@router.patch(
    "/constraints/set-createdAt-from-start",
    tags=["Notices"],
    dependencies=[Depends(require_writes)],
)
async def set_created_at_from_start(ingest: IngestService = Depends(get_ingest)):
    return {"updated": await ingest.set_created_at_from_start()}


# ---- Volumes, capacity and prices ----


@router.get("/volumes/firm-transport/{pipeline}", tags=["Volumes"])
async def firm_transport(
    pipeline: str,
    as_of_date: Optional[str] = Query(None, alias="asOfDate", pattern=DATE_PATTERN),
    flow_date: Optional[str] = Query(None, alias="flowDate", pattern=DATE_PATTERN),
    enrich: bool = Query(False),
    repository: NetworkRepository = Depends(get_repository),
    enricher: ContractEnricher = Depends(get_enricher),
):
    contracts = await repository.firm_transport(pipeline, as_of_date)
    if enrich:
        day = flow_date or as_of_date
        if not day:
            raise ValidationError("flowDate or asOfDate is required when enrich=true")
        contracts = await enricher.enrich_contracts(contracts, day)
    return {
        "params": {"pipeline": pipeline, "asOfDate": as_of_date, "flowDate": flow_date},
        "count": len(contracts),
        "contracts": contracts,
    }


@router.get("/volumes/historical-flow/{pipeline}/{startDate}/{endDate}", tags=["Volumes"])
async def historical_flow(
    pipeline: str,
    start_date: str = Path(..., alias="startDate", pattern=DATE_PATTERN),
    end_date: str = Path(..., alias="endDate", pattern=DATE_PATTERN),
    location_id: Optional[str] = Query(None, alias="locationId"),
    cycle: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
    skip: Optional[str] = Query(None),
    repository: NetworkRepository = Depends(get_repository),
):
    page = validate_page(limit, skip)
    flows = await repository.historical_flow(
        pipeline, start_date, end_date, location_id=location_id, cycle=cycle, **page
    )
    return {
        "params": {
            "pipeline": pipeline,
            "startDate": start_date,
            "endDate": end_date,
            "locationId": location_id,
            "cycle": cycle,
        },
        "count": len(flows),
        "flows": flows,
        "page": page,
    }


@router.get("/capacity/{pipeline}/{location}/{flowDate}", tags=["Capacity"])
async def capacity_at(
    pipeline: str,
    location: str,
    flow_date: str = Path(..., alias="flowDate", pattern=DATE_PATTERN),
    quantity_type: QuantityType = Query(QuantityType.RPQ, alias="quantityType"),
    limit: Optional[str] = Query(None),
    capacity: CapacityAggregator = Depends(get_capacity),
):
    page = validate_page(limit, 0, default_limit=10)
    result = await capacity.capacity_at(pipeline, location, quantity_type, flow_date, limit=page["limit"])
    return {
        "pipeline": pipeline,
        "location": location,
        "flowDate": flow_date,
        "quantityType": quantity_type.value,
        "count": len(result["records"]),
        **result,
    }


@router.post("/capacity/oac", tags=["Capacity"], dependencies=[Depends(require_writes)])
async def ingest_oac(body: Any = Body(...), ingest: IngestService = Depends(get_ingest)):
    return await ingest.ingest_oac(_batch_body(body))


@router.get("/prices/{pipeline}/{startDate}/{endDate}", tags=["Prices"])
async def prices(
    pipeline: str,
    start_date: str = Path(..., alias="startDate", pattern=DATE_PATTERN),
    end_date: str = Path(..., alias="endDate", pattern=DATE_PATTERN),
    limit: Optional[str] = Query(None),
    skip: Optional[str] = Query(None),
    repository: NetworkRepository = Depends(get_repository),
):
    page = validate_page(limit, skip)
    rows = await repository.prices(pipeline, start_date, end_date, **page)
    return {
        "params": {"pipeline": pipeline, "startDate": start_date, "endDate": end_date},
        "count": len(rows),
        "prices": rows,
        "page": page,
    }


@router.post("/prices", tags=["Prices"], dependencies=[Depends(require_writes)])
async def upsert_prices(body: Any = Body(...), ingest: IngestService = Depends(get_ingest)):
    return await ingest.upsert_prices(_batch_body(body))


# ---- Paths ----


@router.get("/path", tags=["Paths"])
async def find_path(
    from_: Optional[str] = Query(None, alias="from"),
    to: Optional[str] = Query(None),
    max_hops: Optional[str] = Query(None, alias="maxHops"),
    at: Optional[str] = Query(None),
    pipeline: Optional[str] = Query(None),
    resolver: PathResolver = Depends(get_resolver),
):
    source, target = LocationRef.parse(from_, pipeline), LocationRef.parse(to, pipeline)
    path = await resolver.resolve_path(source, target, max_hops=max_hops, at=at)
    if path is None:
        raise NotFoundError("No path found")
    return path.to_dict()


@router.get("/path/details", tags=["Paths"])
async def path_details(
    from_: Optional[str] = Query(None, alias="from"),
    to: Optional[str] = Query(None),
    max_hops: Optional[str] = Query(None, alias="maxHops"),
    at: Optional[str] = Query(None),
    flow_date: Optional[str] = Query(None, alias="flowDate", pattern=DATE_PATTERN),
    pipeline: Optional[str] = Query(None),
    resolver: PathResolver = Depends(get_resolver),
):
    source, target = LocationRef.parse(from_, pipeline), LocationRef.parse(to, pipeline)
    details = await resolver.path_details(source, target, max_hops=max_hops, at=at, flow_date=flow_date)
    if details is None:
        raise NotFoundError("No path found")
    return details


# ---- Pass-through ----


@router.post("/cypher/read", tags=["Cypher"])
async def cypher_read(
    body: Any = Body(...),
    executor: GraphExecutor = Depends(get_executor),
):
    """Run a parameterized read-only Cypher query."""
    body = _object_body(body)
    query = check_read_only_query(body.get("query"))
    params = body.get("params") or {}
    if not isinstance(params, dict):
        raise ValidationError("params must be an object")

    records = await executor.execute(
        _quote_identifiers(query),
        {key: Jsonb(value) for key, value in params.items()},
    )
    return {"count": len(records), "records": records}
