"""
Similarity Retriever

Finds "similar historical events" for a catalyst.

Methods, in order of preference:
- vector: cosine similarity over embeddings of earlier same-type events
- proxy: same-type candidates scored type +0.5, sector +0.3, tie-break 0-0.2
- fallback: fixed literal set when no candidates exist at all
"""

import logging
import random
from dataclasses import dataclass, field
from typing import Dict, List, Literal, Optional

import numpy as np

from pipeline.config import PipelineConfig, get_config
from pipeline.models import Catalyst, SimilarEvent

logger = logging.getLogger(__name__)


RetrievalMethod = Literal["vector", "proxy", "fallback"]

PROXY_CANDIDATE_LIMIT = 5


def fallback_events(catalyst_type: str) -> List[SimilarEvent]:
    """Fixed precedents returned when the store has no candidates."""
    earnings = catalyst_type == "earnings"
    return [
        SimilarEvent(ticker="AAPL" if earnings else "MRNA", event_date="2024-01-25",
                     actual_movement=5.2, similarity_score=0.82),
        SimilarEvent(ticker="GOOGL" if earnings else "PFE", event_date="2024-01-18",
                     actual_movement=-2.8, similarity_score=0.75),
    ]


@dataclass
class SimilarityResult:
    events: List[SimilarEvent] = field(default_factory=list)
    method: RetrievalMethod = "fallback"


def cosine_scores(query: List[float], matrix: np.ndarray) -> np.ndarray:
    """Cosine similarity of one vector against each row of a matrix."""
    q = np.asarray(query, dtype=np.float64)
    q_norm = np.linalg.norm(q)
    row_norms = np.linalg.norm(matrix, axis=1)
    denom = q_norm * row_norms
    with np.errstate(divide="ignore", invalid="ignore"):
        scores = np.where(denom > 0, matrix @ q / denom, 0.0)
    return scores


class SimilarityRetriever:
    """
    Retrieves the top-K similar historical catalysts.

    The proxy tie-break draws from an injectable random.Random so tests
    can seed it.
    """

    def __init__(
        self,
        store,
        config: Optional[PipelineConfig] = None,
        rng: Optional[random.Random] = None
    ):
        self.store = store
        self.config = config or get_config()
        self.k = self.config.get("predictor.similar_events_k", 3)
        self.vector_candidate_limit = self.config.get("predictor.vector_candidate_limit", 500)
        self.rng = rng or random.Random()

    def find_similar(
        self,
        catalyst_type: str,
        ticker: str,
        sector: Optional[str] = None,
        reference: Optional[Catalyst] = None,
        k: Optional[int] = None
    ) -> SimilarityResult:
        """
        Find similar events.

        Args:
            catalyst_type: Type of the catalyst being predicted
            ticker: Its ticker (excluded from results)
            sector: Its sector, for the proxy score
            reference: Stored catalyst; enables the vector path if embedded
            k: Number of events to return

        Returns:
            SimilarityResult sorted by similarity descending
        """
        k = k or self.k

        if reference is not None and reference.embedding:
            events = self._by_vector(reference, k)
            if events:
                return SimilarityResult(events, "vector")

        events = self._by_proxy(catalyst_type, ticker, sector, k)
        if events:
            return SimilarityResult(events, "proxy")

        logger.info(f"No historical {catalyst_type} candidates for {ticker}; returning fixed fallback precedents")
        return SimilarityResult(fallback_events(catalyst_type)[:k], "fallback")

    def _movements(self, catalysts: List[Catalyst]) -> Dict[int, float]:
        """Average recorded percentage change per catalyst (0.0 when none)."""
        outcomes = self.store.outcomes_for(c.id for c in catalysts)
        movements = {}
        for cid, rows in outcomes.items():
            changes = [r["percentage_change"] for r in rows if r.get("percentage_change") is not None]
            movements[cid] = round(sum(changes) / len(changes), 4) if changes else 0.0
        return movements

    def _by_vector(self, reference: Catalyst, k: int) -> List[SimilarEvent]:
        history = self.store.with_embeddings(
            exclude_id=reference.id,
            catalyst_type=reference.type,
            before=reference.event_date,
            exclude_ticker=reference.ticker,
            limit=self.vector_candidate_limit,
        )
        candidates = [
            c for c in history
            if c.embedding and len(c.embedding) == len(reference.embedding)
        ]
        if not candidates:
            return []

        matrix = np.asarray([c.embedding for c in candidates], dtype=np.float64)
        scores = cosine_scores(reference.embedding, matrix)
        order = np.argsort(-scores, kind="stable")[:k]

        top = [candidates[i] for i in order]
        movements = self._movements(top)
        return [
            SimilarEvent(
                ticker=c.ticker,
                event_date=c.event_date.date().isoformat(),
                actual_movement=movements.get(c.id, 0.0),
                similarity_score=round(float(min(max(scores[i], 0.0), 1.0)), 4),
            )
            for c, i in zip(top, order)
        ]

    def _by_proxy(
        self,
        catalyst_type: str,
        ticker: str,
        sector: Optional[str],
        k: int
    ) -> List[SimilarEvent]:
        candidates = self.store.candidates_by_type(
            catalyst_type, exclude_ticker=ticker, limit=PROXY_CANDIDATE_LIMIT
        )
        if not candidates:
            return []

        movements = self._movements(candidates)
        scored = []
        for c in candidates:
            score = 0.0
            if c.type == catalyst_type:
                score += 0.5
            if sector and c.metadata.sector and c.metadata.sector == sector:
                score += 0.3
            score += self.rng.random() * 0.2
            scored.append(SimilarEvent(
                ticker=c.ticker,
                event_date=c.event_date.date().isoformat(),
                actual_movement=movements.get(c.id, 0.0),
                similarity_score=round(min(score, 1.0), 4),
            ))

        scored.sort(key=lambda e: e.similarity_score, reverse=True)
        return scored[:k]
