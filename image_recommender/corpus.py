"""
Corpus of image feature vectors.

A Corpus is a read-only snapshot mapping image identifiers to feature
vectors. It is built once (by the index builder or from a saved file) and
then only read by the ranker.

On disk a corpus is plain text, one image per line:

    <identifier> <f1> <f2> ... <fn>

with fixed-precision floats separated by single spaces.
"""

import logging
from collections.abc import Mapping
from typing import Dict, Iterable, Iterator, NamedTuple, Optional

import numpy as np

logger = logging.getLogger(__name__)

DEFAULT_PRECISION = 6


class ImageFeature(NamedTuple):
    """An image identifier paired with its feature vector."""

    identifier: str
    vector: np.ndarray


class Corpus(Mapping):
    """
    Immutable mapping from identifier to feature vector.

    Iteration follows insertion order. Stored vectors are 1-D float32 arrays
    with the writeable flag cleared.
    """

    def __init__(self, features: Iterable[ImageFeature] = ()):
        vectors: Dict[str, np.ndarray] = {}
        for identifier, vector in features:
            if identifier in vectors:
                raise ValueError(f"Duplicate identifier in corpus: {identifier}")
            array = np.array(vector, dtype=np.float32).reshape(-1)
            array.setflags(write=False)
            vectors[identifier] = array
        self._vectors = vectors

    @classmethod
    def from_mapping(cls, mapping: Mapping) -> "Corpus":
        return cls(ImageFeature(k, v) for k, v in mapping.items())

    def __getitem__(self, identifier: str) -> np.ndarray:
        return self._vectors[identifier]

    def __iter__(self) -> Iterator[str]:
        return iter(self._vectors)

    def __len__(self) -> int:
        return len(self._vectors)

    def __repr__(self) -> str:
        return f"Corpus({len(self)} images, dimension={self.dimension})"

    def entries(self) -> Iterator[ImageFeature]:
        for identifier, vector in self._vectors.items():
            yield ImageFeature(identifier, vector)

    @property
    def dimension(self) -> Optional[int]:
        """Common vector length, or None if empty or mixed."""
        lengths = {v.size for v in self._vectors.values()}
        if len(lengths) != 1:
            return None
        return lengths.pop()


def save_corpus(corpus: Corpus, path: str,
                precision: int = DEFAULT_PRECISION) -> int:
    """
    Write a corpus in the text interchange format.

    Args:
        corpus: Corpus to write.
        path: Output file path.
        precision: Digits after the decimal point.

    Returns:
        Number of lines written.

    Raises:
        ValueError: If an identifier is empty or contains whitespace.
    """
    fmt = f"{{:.{precision}f}}"
    count = 0
    with open(path, 'w', encoding='utf-8') as f:
        for identifier, vector in corpus.entries():
            if not identifier or any(ch.isspace() for ch in identifier):
                raise ValueError(
                    f"Identifier can't be written to a corpus file: {identifier!r}"
                )
            values = " ".join(fmt.format(float(v)) for v in vector)
            f.write(f"{identifier} {values}\n")
            count += 1

    logger.info(f"Saved {count} feature vectors to {path}")
    return count


def load_corpus(path: str) -> Corpus:
    """
    Read a corpus written by save_corpus().

    Blank lines are ignored. Lines without a vector, with unparsable
    numbers, or repeating an earlier identifier are logged and skipped.
    """
    features = []
    seen = set()
    skipped = 0

    with open(path, 'r', encoding='utf-8') as f:
        for line_no, line in enumerate(f, start=1):
            parts = line.split()
            if not parts:
                continue

            identifier, values = parts[0], parts[1:]
            if not values:
                logger.warning(f"{path}:{line_no}: no feature values for {identifier}")
                skipped += 1
                continue
            if identifier in seen:
                logger.warning(f"{path}:{line_no}: duplicate identifier {identifier}")
                skipped += 1
                continue

            try:
                vector = np.array([float(v) for v in values], dtype=np.float32)
            except ValueError as e:
                logger.warning(f"{path}:{line_no}: bad feature value ({e})")
                skipped += 1
                continue

            seen.add(identifier)
            features.append(ImageFeature(identifier, vector))

    corpus = Corpus(features)
    logger.info(
        f"Loaded {len(corpus)} feature vectors from {path}"
        + (f" ({skipped} lines skipped)" if skipped else "")
    )
    return corpus
