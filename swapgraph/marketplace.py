"""
swapgraph/marketplace.py

Explicit wiring of one marketplace: a StateStore, an EventJournal and the
services that share them. There is no process-wide instance; callers build
a Marketplace and pass it around.

    market = Marketplace(SwapGraphConfig.from_env())
    market.intents.create(actor, {"intent": {...}})
    run = market.matching.run(operator, {"bounds": {"max_cycle_length": 3}})
"""

import logging
import time
from typing import Any, Callable, Dict, Iterable, List, Optional

from swapgraph.core.config import SwapGraphConfig
from swapgraph.core.crypto import Ed25519KeyManager
from swapgraph.core.journal import EventJournal
from swapgraph.core.models import OperationResult
from swapgraph.intents.service import IntentService
from swapgraph.matching.service import MatchingService
from swapgraph.matching.shadow import ShadowSelector
from swapgraph.settlement.commit import CommitService
from swapgraph.settlement.engine import SettlementEngine
from swapgraph.settlement.receipts import ReceiptSigner
from swapgraph.store.state import StateStore


logger = logging.getLogger(__name__)


class Marketplace:

    def __init__(
        self,
        config:          Optional[SwapGraphConfig] = None,
        key_manager:     Optional[Ed25519KeyManager] = None,
        clock:           Callable[[], float] = time.monotonic,
        shadow_selector: Optional[ShadowSelector] = None,
    ) -> None:
        self.config = config or SwapGraphConfig()
        self.config.validate()
        self.key_manager = key_manager or Ed25519KeyManager.generate()

        self.store   = StateStore()
        self.journal = EventJournal(self.key_manager, path=self.config.journal.path)
        self.signer  = ReceiptSigner(self.key_manager, self.config.settlement.receipt_key_id)

        self.intents    = IntentService(self.store, self.journal)
        self.matching   = MatchingService(
            self.store, self.journal, self.config.matching,
            clock=clock, shadow_selector=shadow_selector,
        )
        self.commits    = CommitService(self.store, self.journal)
        self.settlement = SettlementEngine(self.store, self.journal, self.signer, self.config.settlement)

    def load_intents(self, intents: Iterable[Dict[str, Any]]) -> List[OperationResult]:
        """Create each intent on behalf of its own actor."""
        results = []
        for raw in intents:
            actor = raw.get("actor") if isinstance(raw, dict) else None
            result = self.intents.create(actor or {"type": "user", "id": "anonymous"}, {"intent": raw})
            if not result:
                logger.warning("intent %s rejected: %s", raw.get("id") if isinstance(raw, dict) else raw, result.error)
            results.append(result)
        return results
