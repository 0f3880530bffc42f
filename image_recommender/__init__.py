"""
image_recommender — Similar-image recommendations from CNN features.

Preprocesses images into normalized model inputs, extracts feature vectors
with an external model (ONNX Runtime by default), and ranks a corpus of
images by cosine similarity to a selected one.

Modules:
    engine          RecommendationEngine (the recommend() query)
    preprocessing   Nearest-neighbor resample + ImageNet normalization
    extractor       Feature extractor boundary and ONNX engine
    index_builder   Batch corpus construction
    corpus          Immutable corpus snapshot and its text file format
    scoring         Cosine similarity and top-K ranking
"""

from .corpus import Corpus, ImageFeature, load_corpus, save_corpus
from .engine import RecommendationEngine, pixel_similarity
from .extractor import ExtractionError, FeatureExtractor, OnnxFeatureExtractor, extract
from .index_builder import CorpusReport, ExtractionResult, build_corpus, extract_corpus
from .preprocessing import InvalidImageError, PreprocessConfig, RawImage, preprocess
from .scoring import RankedCandidate, cosine_similarity, rank

__version__ = "1.0.0"

__all__ = [
    "Corpus", "ImageFeature", "load_corpus", "save_corpus",
    "RecommendationEngine", "pixel_similarity",
    "ExtractionError", "FeatureExtractor", "OnnxFeatureExtractor", "extract",
    "CorpusReport", "ExtractionResult", "build_corpus", "extract_corpus",
    "InvalidImageError", "PreprocessConfig", "RawImage", "preprocess",
    "RankedCandidate", "cosine_similarity", "rank",
]
