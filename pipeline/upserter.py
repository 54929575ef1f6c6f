"""
Catalyst Upserter

Scores drafts and merges them into the store on the natural key
(ticker, event_date). One conflict policy applies to every writer: the
first write for a key wins and later writes for that key are no-ops.
Re-scoring an existing catalyst is a separate, explicit operation.

Inserted catalysts are announced on the change channel.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from pipeline.channel import ChangeChannel, ChangeEvent
from pipeline.models import Catalyst, CatalystDraft
from pipeline.scorer import CatalystScorer
from pipeline.storage import CatalystStore

logger = logging.getLogger(__name__)


@dataclass
class UpsertResult:
    inserted: List[Catalyst] = field(default_factory=list)
    skipped: int = 0

    @property
    def inserted_count(self) -> int:
        return len(self.inserted)


class CatalystUpserter:
    """First-write-wins merge of scored drafts into the store."""

    def __init__(
        self,
        store: CatalystStore,
        scorer: CatalystScorer,
        channel: Optional[ChangeChannel] = None
    ):
        self.store = store
        self.scorer = scorer
        self.channel = channel

    def upsert(self, drafts: Iterable[CatalystDraft], with_prediction: bool = False) -> UpsertResult:
        """
        Score drafts and insert those whose natural key is new.

        Args:
            drafts: Normalized drafts
            with_prediction: Attach predicted_impact from outcome history

        Returns:
            UpsertResult with the inserted catalysts

        Raises:
            PersistenceError: The batch write failed (nothing from this batch stored)
        """
        scored = [self.scorer.build(d, with_prediction=with_prediction) for d in drafts]
        inserted = self.store.insert_ignore(scored)

        result = UpsertResult(inserted=inserted, skipped=len(scored) - len(inserted))
        logger.info(f"Upserted {result.inserted_count} catalysts, {result.skipped} already present")

        for catalyst in inserted:
            self.publish("insert", catalyst)
        return result

    def publish(self, kind: str, catalyst: Catalyst) -> None:
        if self.channel is None:
            return
        self.channel.publish(ChangeEvent(
            kind=kind,
            catalyst_id=catalyst.id,
            ticker=catalyst.ticker,
            event_date=catalyst.event_date,
            payload=catalyst.to_dict(),
        ))
