"""Bounded-concurrency fan-out used to enrich contracts and path segments."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional, Sequence, TypeVar

logger = logging.getLogger("gasnet_graph_api")

T = TypeVar("T")
U = TypeVar("U")

DEFAULT_CONCURRENCY = 5


async def enrich(
    items: Sequence[T],
    fn: Callable[[T], Awaitable[U]],
    concurrency: int = DEFAULT_CONCURRENCY,
    return_exceptions: bool = False,
) -> List[Any]:
    """
    Apply ``fn`` to every item with at most ``concurrency`` calls in flight.

    A fixed set of workers repeatedly claims the next unclaimed index, so
    result ``i`` always belongs to item ``i`` whatever the completion order.

    Parameters
    ----------
    items : Sequence[T]
        The working set.
    fn : Callable[[T], Awaitable[U]]
        Coroutine function applied to each item.
    concurrency : int
        Maximum number of concurrent ``fn`` invocations.
    return_exceptions : bool
        When False (default) the first failure cancels the remaining work
        and is raised. When True a failed item's slot holds its exception
        and every other item still completes.

    Returns
    -------
    List[Any]
        Results in input order.
    """
    if concurrency < 1:
        raise ValueError(f"concurrency must be at least 1, got {concurrency}")

    results: List[Any] = [None] * len(items)
    if not items:
        return results

    next_index = 0

    async def worker() -> None:
        nonlocal next_index
        while next_index < len(items):
            index = next_index
            next_index += 1
            try:
                results[index] = await fn(items[index])
            except Exception as e:
                if not return_exceptions:
                    raise
                logger.warning(f"Enrichment of item {index} failed: {e}")
                results[index] = e

    workers = [asyncio.create_task(worker()) for _ in range(min(concurrency, len(items)))]
    try:
        await asyncio.gather(*workers)
    except BaseException:
        for task in workers:
            task.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        raise

    return results


class ContractEnricher:
    """
    Layers scheduled quantity, remaining capacity and receipt/delivery
    capacity onto firm-transport contract rows.

    Each pass fans out over the whole contract list before the next pass
    starts; the concurrency bound applies within a pass.
    """

    def __init__(self, repository, capacity, concurrency: int = DEFAULT_CONCURRENCY) -> None:
        self.repository = repository
        self.capacity = capacity
        self.concurrency = concurrency

    async def get_scheduled_qty(self, contract: dict, flow_date: str) -> Optional[float]:
        return await self.repository.scheduled_quantity(
            contract["pipelineCode"], contract["contractId"], flow_date
        )

    @staticmethod
    def calculate_max_capacity(contract: dict) -> Optional[float]:
        mdq = contract.get("mdq")
        if mdq is None:
            return None
        return max(mdq - (contract.get("scheduledQty") or 0), 0)

    async def _capacity_pair(self, contract: dict, flow_date: str) -> dict:
        receipt = await self.capacity.capacity_at(
            contract["pipelineCode"], contract.get("primaryReceiptId"), "RPQ", flow_date, limit=1, by_id=True
        )
        delivery = await self.capacity.capacity_at(
            contract["pipelineCode"], contract.get("primaryDeliveryId"), "DPQ", flow_date, limit=1, by_id=True
        )
        return {"receiptCapacity": receipt, "deliveryCapacity": delivery}

    async def enrich_contracts(self, contracts: List[dict], flow_date: str) -> List[dict]:
        working = [dict(c) for c in contracts]

        async def scheduled(contract: dict) -> Optional[float]:
            return await self.get_scheduled_qty(contract, flow_date)

        for contract, qty in zip(working, await enrich(working, scheduled, self.concurrency)):
            contract["scheduledQty"] = qty

        async def max_capacity(contract: dict) -> Optional[float]:
            return self.calculate_max_capacity(contract)

        for contract, cap in zip(working, await enrich(working, max_capacity, self.concurrency)):
            contract["maxCapacity"] = cap

        async def capacity_pair(contract: dict) -> dict:
            return await self._capacity_pair(contract, flow_date)

        for contract, pair in zip(working, await enrich(working, capacity_pair, self.concurrency)):
            contract.update(pair)

        logger.debug(f"Enriched {len(working)} contracts for {flow_date}")
        return working
