import os

import pytest
import pytest_asyncio
from psycopg_pool import AsyncConnectionPool  # type: ignore

from gasnet_graph_api.executor import AccessMode, GraphExecutor
from gasnet_graph_api.utils import _quote_identifiers

NETWORK = """
    CREATE (a:Location {pipelineCode: 'ANR', locationId: '100', name: 'Alpha', direction: 'R'}),
           (b:Location {pipelineCode: 'ANR', locationId: '200', name: 'Bravo', direction: 'T'}),
           (c:Location {pipelineCode: 'ANR', locationId: '300', name: 'Charlie', direction: 'D'}),
           (x:Constraint {constraintId: 'c-1', kind: 'Outage', reason: 'Compressor work',
                          pipelineCode: 'ANR', percent: 40,
                          effectiveDatetime: '2025-11-01T06:00:00', endDatetime: '2025-11-01T12:00:00'}),
           (a)-[:CONNECTS_TO {pipelineCode: 'ANR', version: 1}]->(b),
           (b)-[:CONNECTS_TO {pipelineCode: 'ANR', version: 1}]->(c),
           (b)-[:HAS_CONSTRAINT]->(x)
"""


@pytest.fixture
def graphname():
    return os.getenv("AGENSGRAPH_GRAPH_NAME", "gasnet_test")


@pytest_asyncio.fixture
async def pool():
    db_name = os.getenv("AGENSGRAPH_DB")
    db_user = os.getenv("AGENSGRAPH_USERNAME")
    db_password = os.getenv("AGENSGRAPH_PASSWORD")
    db_host = os.getenv("AGENSGRAPH_HOST", "localhost")
    db_port = os.getenv("AGENSGRAPH_PORT", "5432")

    if not db_name or not db_user or not db_password:
        pytest.skip("AGENSGRAPH_DB, AGENSGRAPH_USERNAME and AGENSGRAPH_PASSWORD must be set")

    db_url = f"postgresql://{db_user}:{db_password}@{db_host}:{db_port}/{db_name}"
    agensgraph_pool = AsyncConnectionPool(db_url, open=False)
    await agensgraph_pool.open()

    yield agensgraph_pool

    await agensgraph_pool.close()


@pytest_asyncio.fixture
async def executor(pool, graphname):
    graph = GraphExecutor(pool, graphname, read_timeout=10)
    await graph.ensure_graph()
    await graph.execute("MATCH (n) DETACH DELETE n", mode=AccessMode.WRITE)
    return graph


@pytest_asyncio.fixture
async def network(executor):
    await executor.execute(_quote_identifiers(NETWORK), mode=AccessMode.WRITE)
    return executor
