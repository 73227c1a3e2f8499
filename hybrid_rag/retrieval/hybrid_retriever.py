"""Hybrid retrieval combining vector search and knowledge graph search.

Both channels run on a thread pool under one overall deadline. A channel that
raises is reported as an error, a channel still running at the deadline is
reported as timed out, and in both cases it contributes nothing to the
result. The graph channel fans out one pattern search per search term and
merges the per-term results in term order, keeping the first occurrence of
every node and relationship id.
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from loguru import logger

from hybrid_rag.retrieval.models import (
    HybridQueryOptions,
    HybridSearchResult,
    QueryStrategy,
    VectorSearchResult,
)
from hybrid_rag.retrieval.query_classifier import classify, extract_search_terms
from hybrid_rag.retrieval.vector_retriever import VectorRetriever
from hybrid_rag.storage.graph_store import GraphStore
from hybrid_rag.storage.schemas import (
    GraphQueryResult,
    GraphSearchOptions,
    KnowledgeGraphNode,
    KnowledgeGraphRelationship,
)
from hybrid_rag.utils.config import HybridSearchConfig, RetrievalConfig

GRAPH_SOURCE_FALLBACK = "Knowledge Graph"


@dataclass
class GraphChannelResult:
    result: GraphQueryResult
    failed_terms: int = 0
    total_terms: int = 0


@dataclass
class ChannelOutcome:
    status: str = "skipped"  # skipped | ok | error | timeout
    value: Any = None
    error: Optional[str] = None


@dataclass
class QueryStats:
    queries: int = 0
    failed_queries: int = 0
    vector_errors: int = 0
    vector_timeouts: int = 0
    graph_errors: int = 0
    graph_timeouts: int = 0
    total_time_ms: float = 0.0
    strategies: Dict[str, int] = field(default_factory=dict)


def dedupe_by_id(items: List[Any]) -> List[Any]:
    """Keep the first item for every ``id``, preserving order."""
    seen = set()
    unique = []
    for item in items:
        if item.id in seen:
            continue
        seen.add(item.id)
        unique.append(item)
    return unique


def combined_score(
    vector_results: List[VectorSearchResult],
    node_count: int,
    vector_weight: float,
    graph_weight: float,
) -> Tuple[float, float, float]:
    """Return ``(combined, vector_score, graph_score)``, each in [0, 1]."""
    if vector_results:
        mean = sum(r.score for r in vector_results) / len(vector_results)
        vector_score = max(0.0, min(1.0, mean))
    else:
        vector_score = 0.0
    graph_score = min(1.0, node_count / 10)

    total_weight = vector_weight + graph_weight
    if total_weight <= 0:
        return 0.0, vector_score, graph_score
    combined = (vector_score * vector_weight + graph_score * graph_weight) / total_weight
    return max(0.0, min(1.0, combined)), vector_score, graph_score


class HybridRetriever:
    """Runs vector and graph retrieval for a question and fuses the outcome."""

    def __init__(
        self,
        vector_retriever: Optional[VectorRetriever],
        graph_store: Optional[GraphStore],
        config: Optional[RetrievalConfig] = None,
    ) -> None:
        self.vector_retriever = vector_retriever
        self.graph_store = graph_store
        self.config = config or RetrievalConfig()
        self.hybrid_config: HybridSearchConfig = self.config.hybrid
        self._stats = QueryStats()
        self._stats_lock = threading.Lock()

        logger.info(
            "Initialized HybridRetriever",
            parallel_execution=self.hybrid_config.parallel_execution,
            vector_weight=self.hybrid_config.vector_weight,
            graph_weight=self.hybrid_config.graph_weight,
        )

    def query(self, question: str, options: Optional[HybridQueryOptions] = None) -> HybridSearchResult:
        """Answer ``question`` from both channels; never raises."""
        start_time = time.perf_counter()
        options = options or HybridQueryOptions()
        strategy = QueryStrategy.BALANCED

        try:
            strategy = classify(question)
            max_results = options.max_results or self.hybrid_config.max_results
            timeout = options.timeout_seconds or self.hybrid_config.timeout_seconds
            logger.info(
                "Hybrid query",
                strategy=strategy.value,
                use_vector=options.use_vector,
                use_graph=options.use_graph,
                timeout=timeout,
            )

            vector_outcome, graph_outcome = self._run_channels(
                question, options, max_results, timeout
            )

            vector_results: List[VectorSearchResult] = (
                vector_outcome.value if vector_outcome.status == "ok" else []
            )
            graph_channel: Optional[GraphChannelResult] = (
                graph_outcome.value if graph_outcome.status == "ok" else None
            )
            graph_results = graph_channel.result if graph_channel else GraphQueryResult()

            score, vector_score, graph_score = combined_score(
                vector_results,
                len(graph_results.nodes),
                self.hybrid_config.vector_weight,
                self.hybrid_config.graph_weight,
            )

            elapsed_ms = (time.perf_counter() - start_time) * 1000
            explanation = self._explain(strategy, vector_outcome, graph_outcome, elapsed_ms)
            self._record(strategy, vector_outcome, graph_outcome, elapsed_ms, failed=False)

            logger.info(
                "Hybrid query complete",
                vector_results=len(vector_results),
                graph_nodes=len(graph_results.nodes),
                vector_score=round(vector_score, 3),
                graph_score=round(graph_score, 3),
                combined_score=round(score, 3),
                elapsed_ms=round(elapsed_ms, 1),
            )

            return HybridSearchResult(
                vector_results=vector_results,
                graph_results=graph_results,
                combined_score=score,
                explanation=explanation,
                sources=self._collect_sources(vector_results, graph_results.nodes),
                strategy=strategy,
            )
        except Exception as e:
            elapsed_ms = (time.perf_counter() - start_time) * 1000
            logger.error(f"Hybrid query failed: {e}")
            self._record(strategy, ChannelOutcome(), ChannelOutcome(), elapsed_ms, failed=True)
            return HybridSearchResult(
                combined_score=0.0,
                explanation=f"Query failed: {e}",
                strategy=strategy,
            )

    def get_statistics(self) -> Dict[str, Any]:
        with self._stats_lock:
            stats = self._stats
            return {
                "queries": stats.queries,
                "failed_queries": stats.failed_queries,
                "vector_errors": stats.vector_errors,
                "vector_timeouts": stats.vector_timeouts,
                "graph_errors": stats.graph_errors,
                "graph_timeouts": stats.graph_timeouts,
                "average_time_ms": stats.total_time_ms / stats.queries if stats.queries else 0.0,
                "strategies": dict(stats.strategies),
            }

    def update_settings(self, **changes: Any) -> HybridSearchConfig:
        """Replace hybrid settings such as weights or the timeout.

        Raises:
            ValueError: For unknown setting names or invalid values
        """
        unknown = set(changes) - set(HybridSearchConfig.model_fields)
        if unknown:
            raise ValueError(f"Unknown hybrid settings: {', '.join(sorted(unknown))}")

        updated = HybridSearchConfig.model_validate({**self.hybrid_config.model_dump(), **changes})
        self.hybrid_config = updated
        self.config.hybrid = updated
        logger.info("Updated hybrid settings", **changes)
        return updated

    # Channels

    def _run_channels(
        self,
        question: str,
        options: HybridQueryOptions,
        max_results: int,
        timeout: float,
    ) -> Tuple[ChannelOutcome, ChannelOutcome]:
        vector_outcome = ChannelOutcome()
        graph_outcome = ChannelOutcome()
        futures: Dict[str, Future] = {}

        workers = 2 if self.hybrid_config.parallel_execution else 1
        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="hybrid-query")
        try:
            if options.use_vector:
                futures["vector"] = executor.submit(self._vector_channel, question, max_results)
            if options.use_graph:
                futures["graph"] = executor.submit(self._graph_channel, question)

            done, _ = wait(list(futures.values()), timeout=timeout)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        for name, future in futures.items():
            if future not in done:
                logger.warning(f"{name.capitalize()} search timed out after {timeout}s")
                outcome = ChannelOutcome(status="timeout")
            else:
                try:
                    outcome = ChannelOutcome(status="ok", value=future.result())
                except Exception as e:
                    logger.error(f"{name.capitalize()} search failed: {e}")
                    outcome = ChannelOutcome(status="error", error=str(e))

            if name == "vector":
                vector_outcome = outcome
            else:
                graph_outcome = outcome

        return vector_outcome, graph_outcome

    def _vector_channel(self, question: str, max_results: int) -> List[VectorSearchResult]:
        if self.vector_retriever is None:
            raise RuntimeError("No vector retriever configured")

        chunks = self.vector_retriever.retrieve(question, top_k=max_results)
        results = [
            VectorSearchResult(
                id=chunk.id or str(uuid4()),
                content=chunk.content,
                score=chunk.similarity,
                metadata={
                    **chunk.metadata,
                    "source": chunk.source,
                    "type": "vector",
                    "similarity": chunk.similarity,
                },
            )
            for chunk in chunks
        ]
        return dedupe_by_id(results)

    def _graph_channel(self, question: str) -> GraphChannelResult:
        if self.graph_store is None:
            raise RuntimeError("No graph store configured")

        graph_config = self.config.graph_search
        terms = extract_search_terms(
            question,
            max_terms=graph_config.max_terms,
            min_length=graph_config.min_term_length,
        )
        logger.debug("Graph search terms", terms=terms)
        if not terms:
            return GraphChannelResult(result=GraphQueryResult())

        search_options = GraphSearchOptions(
            search_type=graph_config.search_type,
            max_results=graph_config.max_results,
            min_confidence=graph_config.min_confidence,
            include_relationships=True,
            max_depth=graph_config.max_depth,
        )

        buffers: List[Optional[GraphQueryResult]] = [None] * len(terms)
        workers = min(graph_config.max_workers, len(terms))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="graph-term") as executor:
            term_futures = [
                executor.submit(self.graph_store.search, term, search_options) for term in terms
            ]
            for index, (term, future) in enumerate(zip(terms, term_futures)):
                try:
                    buffers[index] = future.result()
                except Exception as e:
                    logger.warning(f'Graph search failed for term "{term}": {e}')

        nodes: List[KnowledgeGraphNode] = []
        relationships: List[KnowledgeGraphRelationship] = []
        execution_time_ms = 0.0
        for buffer in buffers:
            if buffer is None:
                continue
            nodes.extend(buffer.nodes)
            relationships.extend(buffer.relationships)
            execution_time_ms += buffer.execution_time_ms

        nodes = dedupe_by_id(nodes)
        relationships = dedupe_by_id(relationships)
        return GraphChannelResult(
            result=GraphQueryResult(
                nodes=nodes,
                relationships=relationships,
                result_count=len(nodes) + len(relationships),
                execution_time_ms=execution_time_ms,
            ),
            failed_terms=sum(1 for buffer in buffers if buffer is None),
            total_terms=len(terms),
        )

    # Fusion helpers

    @staticmethod
    def _collect_sources(
        vector_results: List[VectorSearchResult], nodes: List[KnowledgeGraphNode]
    ) -> List[str]:
        candidates = [str(r.metadata.get("source") or "Unknown") for r in vector_results]
        candidates += [str(n.properties.get("source") or GRAPH_SOURCE_FALLBACK) for n in nodes]

        sources: List[str] = []
        for source in candidates:
            if source not in sources:
                sources.append(source)
        return sources

    @staticmethod
    def _explain(
        strategy: QueryStrategy,
        vector_outcome: ChannelOutcome,
        graph_outcome: ChannelOutcome,
        elapsed_ms: float,
    ) -> str:
        parts = [f"Query strategy: {strategy.value}. "]

        if vector_outcome.status == "ok":
            parts.append(f"Vector search found {len(vector_outcome.value)} relevant chunks. ")
        elif vector_outcome.status == "error":
            parts.append("Vector search encountered an error. ")
        elif vector_outcome.status == "timeout":
            parts.append("Vector search timed out. ")

        if graph_outcome.status == "ok":
            channel: GraphChannelResult = graph_outcome.value
            parts.append(
                f"Graph search found {len(channel.result.nodes)} nodes and "
                f"{len(channel.result.relationships)} relationships. "
            )
            if channel.failed_terms:
                parts.append(
                    f"Graph search encountered an error for {channel.failed_terms} "
                    f"of {channel.total_terms} terms. "
                )
        elif graph_outcome.status == "error":
            parts.append("Graph search encountered an error. ")
        elif graph_outcome.status == "timeout":
            parts.append("Graph search timed out. ")

        parts.append(f"Combined analysis completed in {elapsed_ms:.0f}ms.")
        return "".join(parts)

    def _record(
        self,
        strategy: QueryStrategy,
        vector_outcome: ChannelOutcome,
        graph_outcome: ChannelOutcome,
        elapsed_ms: float,
        failed: bool,
    ) -> None:
        with self._stats_lock:
            stats = self._stats
            stats.queries += 1
            stats.failed_queries += int(failed)
            stats.vector_errors += int(vector_outcome.status == "error")
            stats.vector_timeouts += int(vector_outcome.status == "timeout")
            stats.graph_errors += int(graph_outcome.status == "error")
            stats.graph_timeouts += int(graph_outcome.status == "timeout")
            stats.total_time_ms += elapsed_ms
            stats.strategies[strategy.value] = stats.strategies.get(strategy.value, 0) + 1
