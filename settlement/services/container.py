"""Process-wide wiring of stores, adapters and workflows.

Built once per process (API or worker). Tests build their own with fakes in
place of the external adapters.
"""

from functools import lru_cache
from typing import Any

from sqlalchemy.engine import Engine

from settlement.core.db import get_engine, init_db
from settlement.core.settings import Settings, get_settings
from settlement.services.accounts import AlertStore, BalanceService, PositionStore, WalletDirectory
from settlement.services.base import BridgeProvider, ChainReader, CustodialSigner, RouteAggregator
from settlement.services.bridge_service import BridgeService, HttpBridgeProvider
from settlement.services.chain_reader import JsonRpcChainReader
from settlement.services.circle_client import CircleSigner
from settlement.services.deposits import DepositStore
from settlement.services.job_store import JobStore
from settlement.services.lease import LeaseManager
from settlement.services.ledger import LedgerWriter
from settlement.services.lifi_client import LifiAggregator
from settlement.services.queue_service import WorkDispatcher
from settlement.services.reconciler import EventReconciler
from settlement.services.webhook_security import PublicKeyCache
from settlement.workers.job_runner import JobRunner
from settlement.workers.swap_workflow import SwapWorkflow


class Services:
    """Holds every collaborator of the engine for one process."""

    def __init__(
        self,
        settings: Settings,
        engine: Engine,
        signer: CustodialSigner,
        aggregator: RouteAggregator,
        bridge_provider: BridgeProvider,
        chain_reader: ChainReader,
        dispatcher: WorkDispatcher,
        public_keys: PublicKeyCache,
    ) -> None:
        """Wire stores and workflows around the given adapters."""
        self.settings = settings
        self.engine = engine
        self.signer = signer
        self.aggregator = aggregator
        self.chain_reader = chain_reader
        self.dispatcher = dispatcher
        self.public_keys = public_keys

        self.ledger = LedgerWriter(engine)
        self.jobs = JobStore(engine)
        self.leases = LeaseManager(engine)
        self.deposits = DepositStore(engine)
        self.wallets = WalletDirectory(engine)
        self.alerts = AlertStore(engine)
        self.positions = PositionStore(engine)
        self.balances = BalanceService(engine, signer, self.wallets)

        self.bridges = BridgeService(
            settings, bridge_provider, self.deposits, self.ledger, self.wallets, self.alerts, self.balances
        )
        self.swaps = SwapWorkflow(
            settings, self.jobs, self.ledger, signer, aggregator, self.wallets, self.balances, dispatcher
        )
        self.runner = JobRunner(settings, self.jobs, self.leases, self.swaps)
        self.reconciler = EventReconciler(
            settings,
            signer,
            self.ledger,
            self.deposits,
            self.wallets,
            self.alerts,
            self.balances,
            self.positions,
            chain_reader,
            dispatcher,
            self.bridges,
            self.swaps,
        )

    @classmethod
    def build(
        cls,
        settings: Settings,
        engine: Engine | None = None,
        *,
        signer: CustodialSigner | None = None,
        aggregator: RouteAggregator | None = None,
        bridge_provider: BridgeProvider | None = None,
        chain_reader: ChainReader | None = None,
        sqs_client: Any = None,
    ) -> "Services":
        """Build the container, creating real adapters for anything not supplied."""
        engine = engine or get_engine(settings.database_url)
        init_db(engine)
        circle = signer or CircleSigner(settings)
        return cls(
            settings,
            engine,
            circle,
            aggregator or LifiAggregator(settings),
            bridge_provider or HttpBridgeProvider(settings),
            chain_reader or JsonRpcChainReader(settings),
            WorkDispatcher(settings, sqs_client=sqs_client),
            PublicKeyCache(circle.get_notification_public_key, settings.webhook_key_cache_ttl_seconds),
        )


@lru_cache(maxsize=1)
def get_services() -> Services:
    """Return the process-wide container."""
    return Services.build(get_settings())
