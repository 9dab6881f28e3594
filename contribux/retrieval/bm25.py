"""Lexical search index for hybrid retrieval.

Two signals are combined per document:
- BM25 (Best Matching 25) over the full searchable text, squashed into [0, 1)
- trigram similarity between the query and the title, weighted by ``title_weight``

The lexical score is the greater of the two. Structural filters are evaluated
against each document's filter document before anything is scored.
"""

import asyncio
import pickle
import re
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import numpy as np

from ..errors import ContribuxError, IndexUnavailable
from ..logging_config import get_logger
from .filters import FilterDocument, StructuralFilters

logger = get_logger(__name__)


@dataclass
class BM25Config:
    """Configuration for the lexical index."""

    # BM25 parameters
    k1: float = 1.5  # Term frequency saturation parameter
    b: float = 0.75  # Length normalization parameter

    # Tokenization
    lowercase: bool = True
    remove_punctuation: bool = True
    min_token_length: int = 2

    # Optional stopwords removal
    remove_stopwords: bool = True
    custom_stopwords: set[str] = field(default_factory=set)

    # Title trigram matching
    title_weight: float = 0.7
    trigram_threshold: float = 0.3  # below this, similarity counts as 0

    # Score given to every candidate when the query is empty
    neutral_score: float = 0.5
    # Filter-document key ordering empty-query results, highest first
    neutral_sort_key: str = "impact_score"

    # Persistence
    persist_path: str | None = None


# Common English stopwords
DEFAULT_STOPWORDS = {
    "a", "an", "the", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "from", "as", "is", "was", "are", "were", "been",
    "be", "have", "has", "had", "do", "does", "did", "will", "would",
    "could", "should", "may", "might", "must", "shall", "can", "need",
    "it", "its", "this", "that", "these", "those", "i", "you", "he",
    "she", "we", "they", "what", "which", "who", "whom", "when", "where",
    "why", "how", "all", "each", "every", "both", "few", "more", "most",
    "other", "some", "such", "no", "nor", "not", "only", "own", "same",
    "so", "than", "too", "very", "just", "also", "now", "here", "there",
}


def trigrams(text: str) -> set[str]:
    """Trigram set of ``text``; each word is padded with two leading and one trailing space."""
    grams: set[str] = set()
    for word in re.findall(r"\w+", text.lower()):
        padded = f"  {word} "
        grams.update(padded[i:i + 3] for i in range(len(padded) - 2))
    return grams


def trigram_similarity(a: set[str], b: set[str]) -> float:
    """Shared trigrams over the union of both sets."""
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


@dataclass
class IndexedDocument:
    """A record in the lexical index."""

    id: str
    title: str
    content: str
    tokens: list[str]
    title_trigrams: set[str]
    filters: FilterDocument = field(default_factory=dict)


class LexicalIndex:
    """BM25 + title-trigram index with structural pre-filtering and persistence.

    Usage:
        index = LexicalIndex(BM25Config())
        index.add("opp-1", title, text, filter_document(opportunity, repository))
        hits = await index.search("typescript parser", SearchFilters(language="TypeScript"))
    """

    def __init__(self, config: BM25Config | None = None):
        self.config = config or BM25Config()

        # Index state
        self._documents: dict[str, IndexedDocument] = {}
        self._idf: dict[str, float] = {}  # Inverse document frequency
        self._doc_len: dict[str, int] = {}  # Document lengths
        self._avgdl: float = 0.0  # Average document length
        self._term_freqs: dict[str, dict[str, int]] = {}  # term -> {doc_id: freq}
        # Searches run in worker threads
        self._lock = threading.RLock()

        # Stopwords
        self._stopwords = DEFAULT_STOPWORDS.copy()
        if self.config.custom_stopwords:
            self._stopwords.update(self.config.custom_stopwords)

        # Load existing index if path provided
        if self.config.persist_path and Path(self.config.persist_path).exists():
            self.load()

    def _tokenize(self, text: str) -> list[str]:
        """Tokenize text into terms."""
        if self.config.lowercase:
            text = text.lower()

        if self.config.remove_punctuation:
            text = re.sub(r'[^\w\s]', ' ', text)

        return [
            t for t in text.split()
            if len(t) >= self.config.min_token_length
            and (not self.config.remove_stopwords or t not in self._stopwords)
        ]

    def add(self, doc_id: str, title: str, content: str, filters: FilterDocument) -> None:
        """Add or replace a single document."""
        self.add_many([(doc_id, title, content, filters)])

    def add_many(self, entries: list[tuple[str, str, str, FilterDocument]]) -> list[str]:
        """Add or replace documents given as ``(id, title, content, filters)``.

        Returns:
            List of document IDs
        """
        ids = []
        with self._lock:
            for doc_id, title, content, filters in entries:
                if doc_id in self._documents:
                    self._remove(doc_id)

                tokens = self._tokenize(content)
                self._documents[doc_id] = IndexedDocument(
                    id=doc_id,
                    title=title,
                    content=content,
                    tokens=tokens,
                    title_trigrams=trigrams(title),
                    filters=dict(filters),
                )

                self._doc_len[doc_id] = len(tokens)
                term_freq: dict[str, int] = {}
                for token in tokens:
                    term_freq[token] = term_freq.get(token, 0) + 1
                for term, freq in term_freq.items():
                    self._term_freqs.setdefault(term, {})[doc_id] = freq

                ids.append(doc_id)

            self._update_statistics()

        if self.config.persist_path:
            self.save()
        return ids

    def _update_statistics(self):
        """Recalculate IDF scores and average document length."""
        n_docs = len(self._documents)
        if n_docs == 0:
            self._idf = {}
            self._avgdl = 0.0
            return

        self._avgdl = sum(self._doc_len.values()) / n_docs

        # IDF = log((N - n + 0.5) / (n + 0.5) + 1)
        # where N = total docs, n = docs containing term
        self._idf = {
            term: float(np.log((n_docs - len(doc_freqs) + 0.5) / (len(doc_freqs) + 0.5) + 1))
            for term, doc_freqs in self._term_freqs.items()
        }

    async def search(
        self,
        query_text: str,
        filters: Optional[StructuralFilters] = None,
        limit: int = 100,
    ) -> list[tuple[str, float]]:
        """Score pre-filtered documents against the query.

        Returns:
            ``(id, lexical_score)`` pairs, best first, scores in (0, 1)

        Raises:
            IndexUnavailable: the index failed while serving the query
        """
        try:
            return await asyncio.to_thread(self._search_sync, query_text, filters, limit)
        except ContribuxError:
            raise
        except Exception as e:
            logger.error("Lexical search failed: %s", e, exc_info=True)
            raise IndexUnavailable(f"Lexical index failed: {e}", index="lexical") from e

    def _search_sync(
        self, query_text: str, filters: Optional[StructuralFilters], limit: int
    ) -> list[tuple[str, float]]:
        conditions = filters.conditions() if filters is not None else []
        with self._lock:
            candidates = [
                doc for doc in self._documents.values()
                if all(c.matches(doc.filters) for c in conditions)
            ]

            if not query_text.strip():
                sort_key = self.config.neutral_sort_key
                candidates.sort(key=lambda d: (-d.filters.get(sort_key, 0), d.id))
                return [(d.id, self.config.neutral_score) for d in candidates[:limit]]

            query_tokens = self._tokenize(query_text)
            query_grams = trigrams(query_text)
            scores = []
            for doc in candidates:
                score = self._score_document(query_tokens, query_grams, doc)
                if score > 0:
                    scores.append((doc.id, score))

        scores.sort(key=lambda x: (-x[1], x[0]))
        return scores[:limit]

    def _score_document(self, query_tokens: list[str], query_grams: set[str], doc: IndexedDocument) -> float:
        bm25 = self._bm25(query_tokens, doc.id)
        full_text = bm25 / (bm25 + 1.0)

        similarity = trigram_similarity(query_grams, doc.title_trigrams)
        if similarity < self.config.trigram_threshold:
            similarity = 0.0

        return max(full_text, self.config.title_weight * similarity)

    def _bm25(self, query_tokens: list[str], doc_id: str) -> float:
        """BM25 score of a document.

        score = sum(IDF(qi) * (f(qi, D) * (k1 + 1)) / (f(qi, D) + k1 * (1 - b + b * |D|/avgdl)))
        """
        score = 0.0
        doc_len = self._doc_len.get(doc_id, 0)
        if doc_len == 0 or self._avgdl == 0:
            return 0.0

        k1 = self.config.k1
        b = self.config.b
        for token in query_tokens:
            idf = self._idf.get(token)
            if idf is None:
                continue
            tf = self._term_freqs.get(token, {}).get(doc_id, 0)
            if tf == 0:
                continue
            score += idf * (tf * (k1 + 1)) / (tf + k1 * (1 - b + b * doc_len / self._avgdl))
        return score

    def _remove(self, doc_id: str) -> None:
        doc = self._documents.pop(doc_id)
        for token in set(doc.tokens):
            if token in self._term_freqs:
                self._term_freqs[token].pop(doc_id, None)
                if not self._term_freqs[token]:
                    del self._term_freqs[token]
        self._doc_len.pop(doc_id, None)

    def delete(self, ids: list[str]) -> None:
        """Delete documents from the index."""
        with self._lock:
            for doc_id in ids:
                if doc_id in self._documents:
                    self._remove(doc_id)
            self._update_statistics()

        if self.config.persist_path:
            self.save()

    def count(self) -> int:
        """Get number of indexed documents."""
        return len(self._documents)

    def clear(self) -> None:
        """Clear the entire index."""
        with self._lock:
            self._documents.clear()
            self._idf.clear()
            self._doc_len.clear()
            self._term_freqs.clear()
            self._avgdl = 0.0

        if self.config.persist_path:
            self.save()

    def save(self) -> None:
        """Save index to disk."""
        if not self.config.persist_path:
            return

        path = Path(self.config.persist_path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with self._lock:
            state = {
                "documents": self._documents,
                "idf": self._idf,
                "doc_len": self._doc_len,
                "avgdl": self._avgdl,
                "term_freqs": self._term_freqs,
            }
            with open(path, "wb") as f:
                pickle.dump(state, f)

    def load(self) -> None:
        """Load index from disk."""
        if not self.config.persist_path:
            return

        path = Path(self.config.persist_path)
        if not path.exists():
            return

        with open(path, "rb") as f:
            state = pickle.load(f)

        with self._lock:
            self._documents = state["documents"]
            self._idf = state["idf"]
            self._doc_len = state["doc_len"]
            self._avgdl = state["avgdl"]
            self._term_freqs = state["term_freqs"]
        logger.info("Loaded lexical index with %d documents from %s", len(self._documents), path)

    def stats(self) -> dict:
        """Get index statistics."""
        return {
            "document_count": len(self._documents),
            "vocabulary_size": len(self._idf),
            "average_document_length": self._avgdl,
            "total_tokens": sum(self._doc_len.values()),
        }
