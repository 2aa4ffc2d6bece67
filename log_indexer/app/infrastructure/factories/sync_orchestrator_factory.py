from __future__ import annotations

import httpx

from log_indexer.app.application.services.adaptive_range_scanner import AdaptiveRangeScanner
from log_indexer.app.application.services.sync_orchestrator import SyncOrchestrator
from log_indexer.app.config import IndexerSettings
from log_indexer.app.domain.ports.out import LogStore
from log_indexer.app.infrastructure.clients.endpoint_selector import EndpointSelector
from log_indexer.app.infrastructure.clients.explorer_log_client import ExplorerLogClient
from log_indexer.app.infrastructure.decoders.abi_event_decoder import AbiEventDecoder


def create_http_client(settings: IndexerSettings) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=settings.http_timeout)


def sync_orchestrator_factory(
    *,
    settings: IndexerSettings,
    store: LogStore,
    http: httpx.AsyncClient,
) -> SyncOrchestrator:
    """
    Wire the indexer for one contract:
    - ABI decoder (ConfigurationError if the ABI cannot be loaded),
    - explorer client with endpoint fail-over and retry policy,
    - adaptive scanner writing into `store`,
    - orchestrator owning the checkpoint.
    """
    decoder = AbiEventDecoder.from_file(settings.abi_path)

    client = ExplorerLogClient(
        http=http,
        endpoints=EndpointSelector(settings.explorer_urls),
        api_key=settings.explorer_api_key.get_secret_value(),
        chain_id=settings.chain_id,
        max_retries=settings.retries,
    )

    scanner = AdaptiveRangeScanner(
        client=client,
        decoder=decoder,
        store=store,
        address=settings.contract_address,
        max_window=settings.chunk,
        min_window=settings.min_chunk,
        result_cap=settings.result_cap,
    )

    return SyncOrchestrator(
        client=client,
        scanner=scanner,
        store=store,
        start_block=settings.start_block,
        outer_window=settings.chunk,
        overlap=settings.overlap,
    )
