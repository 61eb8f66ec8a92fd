"""Dictionary, count and TF-IDF vectorizers.

These classes reproduce the numeric behaviour of scikit-learn's
`DictVectorizer`, `CountVectorizer` and `TfidfVectorizer` for the options the
form classifier uses:

1.  **Deterministic vocabularies**: feature names are sorted
    lexicographically before columns are assigned, so the same corpus always
    produces the same columns regardless of input order.
2.  **Smoothed IDF**: ``idf = ln((1 + n_docs) / (1 + df)) + 1``.
3.  **L2 normalization** of TF-IDF rows, leaving all-zero rows untouched.

Every vectorizer serializes to a plain dictionary (`to_dict`) and can be
rebuilt from one (`from_dict`), which is how trained form models are stored.
Unknown terms at transform time simply contribute nothing.
"""
from __future__ import annotations
import math
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Tuple

from .sparse import SparseVector
from .textutil import ngrams, token_ngrams, tokenize

__all__ = [
    "DictVectorizer",
    "CountVectorizer",
    "TfidfVectorizer",
    "english_stop_words",
]

ANALYZERS = ("word", "char_wb")


class DictVectorizer:
    """
    Turns feature dictionaries into sparse vectors.

    String values become indicator features named ``"name=value"``; booleans
    and numbers keep the bare feature name and contribute their numeric value.

    Attributes:
        feature_names: Sorted list of fitted feature keys.
        feature_index: Mapping from feature key to column.
    """

    def __init__(self) -> None:
        self.feature_names: List[str] = []
        self.feature_index: Dict[str, int] = {}

    @staticmethod
    def _feature_key(name: str, value: Any) -> str:
        if isinstance(value, str):
            return f"{name}={value}"
        return name

    @staticmethod
    def _feature_value(value: Any) -> float:
        if isinstance(value, bool):
            return 1.0 if value else 0.0
        if isinstance(value, (int, float)):
            return float(value)
        return 1.0

    def fit(self, data: Iterable[Mapping[str, Any]]) -> None:
        keys = set()
        for item in data:
            for name, value in item.items():
                keys.add(self._feature_key(name, value))
        self.feature_names = sorted(keys)
        self.feature_index = {name: i for i, name in enumerate(self.feature_names)}

    def transform(self, item: Mapping[str, Any]) -> SparseVector:
        vec = SparseVector(dim=len(self.feature_names))
        for name, value in item.items():
            idx = self.feature_index.get(self._feature_key(name, value))
            if idx is not None:
                vec.set(idx, self._feature_value(value))
        return vec

    def fit_transform(self, data: Sequence[Mapping[str, Any]]) -> List[SparseVector]:
        self.fit(data)
        return [self.transform(item) for item in data]

    @property
    def vocab_size(self) -> int:
        return len(self.feature_names)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "feature_names": list(self.feature_names),
            "feature_index": dict(self.feature_index),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DictVectorizer":
        dv = cls()
        dv.feature_names = list(data.get("feature_names") or [])
        index = data.get("feature_index")
        if index:
            dv.feature_index = {str(k): int(v) for k, v in index.items()}
        else:
            dv.feature_index = {name: i for i, name in enumerate(dv.feature_names)}
        return dv


class CountVectorizer:
    """
    Converts text into (binary) term-count vectors.

    Attributes:
        vocabulary: Mapping from term to column, fixed after `fit`.
        ngram_range: Inclusive `(min_n, max_n)` n-gram lengths.
        binary: When true, present terms get 1.0 instead of their count.
        analyzer: ``"word"`` for token n-grams or ``"char_wb"`` for character
            n-grams taken inside space-padded tokens.
        min_df: Terms found in fewer documents are left out of the vocabulary.
        stop_words: Tokens dropped before n-gram generation. Only honoured by
            the ``"word"`` analyzer.
    """

    def __init__(
        self,
        ngram_range: Tuple[int, int] = (1, 1),
        binary: bool = False,
        analyzer: str = "word",
        min_df: int = 1,
        stop_words: Optional[Iterable[str]] = None,
    ) -> None:
        analyzer = analyzer or "word"
        if analyzer not in ANALYZERS:
            raise ValueError(f"Unknown analyzer '{analyzer}'. Expected one of {ANALYZERS}.")
        self.vocabulary: Dict[str, int] = {}
        self.ngram_range = (int(ngram_range[0]), int(ngram_range[1]))
        self.binary = bool(binary)
        self.analyzer = analyzer
        self.min_df = max(1, int(min_df))
        self.stop_words: Optional[FrozenSet[str]] = frozenset(stop_words) if stop_words else None

    def analyze(self, text: str) -> List[str]:
        """Splits a document into the terms this vectorizer counts."""
        min_n, max_n = self.ngram_range
        tokens = tokenize(text.lower())
        if self.analyzer == "char_wb":
            # stop words are deliberately not applied to character n-grams
            res: List[str] = []
            for token in tokens:
                res.extend(ngrams(f" {token} ", min_n, max_n))
            return res
        if self.stop_words:
            tokens = [t for t in tokens if t not in self.stop_words]
        return token_ngrams(tokens, min_n, max_n)

    def fit(self, corpus: Iterable[str]) -> None:
        df_counts: Dict[str, int] = {}
        for doc in corpus:
            for term in set(self.analyze(doc)):
                df_counts[term] = df_counts.get(term, 0) + 1
        terms = sorted(term for term, count in df_counts.items() if count >= self.min_df)
        self.vocabulary = {term: i for i, term in enumerate(terms)}

    def transform(self, text: str) -> SparseVector:
        counts: Dict[int, float] = {}
        for term in self.analyze(text):
            idx = self.vocabulary.get(term)
            if idx is not None:
                counts[idx] = counts.get(idx, 0.0) + 1.0
        vec = SparseVector(dim=len(self.vocabulary))
        for idx in sorted(counts):
            vec.set(idx, 1.0 if self.binary else counts[idx])
        return vec

    def fit_transform(self, corpus: Sequence[str]) -> List[SparseVector]:
        self.fit(corpus)
        return [self.transform(doc) for doc in corpus]

    @property
    def vocab_size(self) -> int:
        return len(self.vocabulary)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "vocabulary": dict(self.vocabulary),
            "ngram_range": list(self.ngram_range),
            "binary": self.binary,
            "analyzer": self.analyzer,
            "min_df": self.min_df,
        }
        if self.stop_words:
            data["stop_words"] = sorted(self.stop_words)
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CountVectorizer":
        ngram_range = data.get("ngram_range") or (1, 1)
        cv = cls(
            ngram_range=(ngram_range[0], ngram_range[1]),
            binary=bool(data.get("binary", False)),
            analyzer=data.get("analyzer") or "word",
            min_df=int(data.get("min_df", 1)),
            stop_words=data.get("stop_words"),
        )
        cv.vocabulary = {str(k): int(v) for k, v in (data.get("vocabulary") or {}).items()}
        return cv


class TfidfVectorizer:
    """
    TF-IDF weighting on top of a `CountVectorizer`.

    `fit` learns the vocabulary and a smoothed IDF per term; `transform`
    scales the count vector by the IDF and L2-normalizes it. Form pipelines
    use ``binary=True``, so a present term is weighted by its IDF alone.

    Attributes:
        count_vec: The underlying count vectorizer.
        idf: IDF weights, one per vocabulary column.
        stop_words: Optional stop-word set (word analyzer only).
    """

    def __init__(
        self,
        ngram_range: Tuple[int, int] = (1, 1),
        min_df: int = 1,
        binary: bool = False,
        analyzer: str = "word",
        stop_words: Optional[Iterable[str]] = None,
    ) -> None:
        self.stop_words: Optional[FrozenSet[str]] = frozenset(stop_words) if stop_words else None
        self.count_vec = CountVectorizer(
            ngram_range=ngram_range,
            binary=binary,
            analyzer=analyzer,
            min_df=min_df,
            stop_words=self.stop_words,
        )
        self.idf: List[float] = []

    def fit(self, corpus: Sequence[str]) -> None:
        self.count_vec.fit(corpus)
        df = [0] * self.count_vec.vocab_size
        for doc in corpus:
            for idx in self.count_vec.transform(doc).indices:
                df[idx] += 1
        n_docs = float(len(corpus))
        self.idf = [math.log((1.0 + n_docs) / (1.0 + d)) + 1.0 for d in df]

    def transform(self, text: str) -> SparseVector:
        vec = self.count_vec.transform(text)
        for i, idx in enumerate(vec.indices):
            if idx < len(self.idf):
                vec.values[i] *= self.idf[idx]
        norm = vec.l2_norm()
        if norm > 0:
            vec.values = [v / norm for v in vec.values]
        return vec

    def fit_transform(self, corpus: Sequence[str]) -> List[SparseVector]:
        self.fit(corpus)
        return [self.transform(doc) for doc in corpus]

    @property
    def vocab_size(self) -> int:
        return self.count_vec.vocab_size

    def to_dict(self) -> Dict[str, Any]:
        # stop words travel in the count record
        return {
            "count_vec": self.count_vec.to_dict(),
            "idf": list(self.idf),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TfidfVectorizer":
        tv = cls()
        tv.count_vec = CountVectorizer.from_dict(data.get("count_vec") or {})
        stop_words = data.get("stop_words")
        if stop_words:
            tv.count_vec.stop_words = frozenset(stop_words)
        tv.stop_words = tv.count_vec.stop_words
        tv.idf = [float(v) for v in (data.get("idf") or [])]
        return tv


def english_stop_words() -> FrozenSet[str]:
    """Returns scikit-learn's default English stop-word list."""
    return _ENGLISH_STOP_WORDS


_ENGLISH_STOP_WORDS = frozenset("""
a about above after again against ain all am an and any are aren aren't as at
be because been before being below between both but by can couldn couldn't d
did didn didn't do does doesn doesn't doing don don't down during each few for
from further had hadn hadn't has hasn hasn't have haven haven't having he her
here hers herself him himself his how i if in into is isn isn't it it's its
itself just ll m ma me mightn mightn't more most mustn mustn't my myself needn
needn't no nor not now o of off on once only or other our ours ourselves out
over own re s same shan shan't she she's should should've shouldn shouldn't so
some such t than that that'll the their theirs them themselves then there these
they this those through to too under until up ve very was wasn wasn't we were
weren weren't what when where which while who whom why will with won won't
wouldn wouldn't y you you'd you'll you're you've your yours yourself yourselves
""".split())
