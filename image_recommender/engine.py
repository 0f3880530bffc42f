"""
Image recommendation engine.

Holds a corpus snapshot and answers "which images look most like this
one?" queries:

    1. Look up the selected image's feature vector
    2. Score every other corpus image by cosine similarity
    3. Drop the selected and excluded images, return the top K

Images outside the corpus can be queried too when an extractor is
configured; they go through the same preprocess → extract path used to
build the corpus.
"""

import logging
from typing import Iterable, List

from .corpus import Corpus, load_corpus
from .extractor import DEFAULT_TIMEOUT, ExtractionError, FeatureExtractor, extract
from .preprocessing import PreprocessConfig, RawImage, preprocess
from .scoring import DEFAULT_TOP_K, RankedCandidate, cosine_similarity, rank

logger = logging.getLogger(__name__)


class RecommendationEngine:
    """
    Similar-image recommendations over a fixed corpus.

    The corpus is never modified; build a new engine to pick up a new
    snapshot.
    """

    def __init__(self,
                 corpus: Corpus,
                 extractor: FeatureExtractor = None,
                 config: PreprocessConfig = None):
        """
        Args:
            corpus: Feature vectors of all recommendable images.
            extractor: Optional inference engine, needed only for
                recommend_for_image().
            config: Preprocessing config matching the one the corpus was
                built with.
        """
        if not isinstance(corpus, Corpus):
            corpus = Corpus.from_mapping(corpus)
        self.corpus = corpus
        self.extractor = extractor
        self.config = config or PreprocessConfig()

        logger.info(f"Recommendation engine ready: {corpus!r}")

    @classmethod
    def from_file(cls, path: str,
                  extractor: FeatureExtractor = None,
                  config: PreprocessConfig = None) -> "RecommendationEngine":
        """Create an engine from a corpus file written by save_corpus()."""
        return cls(load_corpus(path), extractor=extractor, config=config)

    def recommend(self,
                  selected_identifier: str,
                  excluded: Iterable[str] = (),
                  k: int = DEFAULT_TOP_K) -> List[RankedCandidate]:
        """
        Recommend images similar to a corpus image.

        Args:
            selected_identifier: Identifier of the image the user picked.
            excluded: Identifiers to leave out (e.g. already shown).
            k: Maximum number of recommendations.

        Returns:
            Up to k RankedCandidate, most similar first. Empty if the
            selected image isn't in the corpus.
        """
        query = self.corpus.get(selected_identifier)
        if query is None:
            logger.warning(f"Selected image not in corpus: {selected_identifier}")
            return []

        return rank(query, self.corpus, excluded=excluded,
                    query_identifier=selected_identifier, k=k)

    def recommend_for_image(self,
                            raw: RawImage,
                            excluded: Iterable[str] = (),
                            k: int = DEFAULT_TOP_K,
                            timeout: float = DEFAULT_TIMEOUT) -> List[RankedCandidate]:
        """
        Recommend corpus images similar to an image outside the corpus.

        Raises:
            InvalidImageError: If the image is malformed.
            ExtractionError: If no extractor is configured or extraction
                fails.
        """
        if self.extractor is None:
            raise ExtractionError("No feature extractor configured")

        tensor = preprocess(raw, self.config)
        query = extract(tensor, self.extractor, timeout=timeout)
        return rank(query, self.corpus, excluded=excluded, k=k)


def pixel_similarity(raw_a: RawImage,
                     raw_b: RawImage,
                     config: PreprocessConfig = None) -> float:
    """
    Model-free similarity: cosine similarity of the two preprocessed tensors.

    Much weaker than comparing feature vectors, but needs no inference
    engine.
    """
    config = config or PreprocessConfig()
    return cosine_similarity(preprocess(raw_a, config), preprocess(raw_b, config))
