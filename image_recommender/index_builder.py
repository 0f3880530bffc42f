"""
Batch corpus construction.

Runs preprocessing and feature extraction over a collection of images and
collects the results into a Corpus. Images are independent, so the work is
spread over a thread pool (inference engines release the GIL).

A failure on one image never aborts the batch: every image gets an
ExtractionResult, either with a vector or with the reason it was skipped,
and the report exposes both.
"""

import os
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .corpus import Corpus, ImageFeature, save_corpus
from .extractor import DEFAULT_TIMEOUT, ExtractionError, FeatureExtractor, extract
from .preprocessing import InvalidImageError, PreprocessConfig, RawImage, load_image, preprocess

logger = logging.getLogger(__name__)

DEFAULT_WORKERS = int(os.environ.get("CORPUS_WORKERS", "4"))

IMAGE_EXTENSIONS = {'.jpg', '.jpeg', '.png', '.bmp', '.tiff', '.webp'}


@dataclass
class ExtractionResult:
    """Outcome for one image: a feature vector, or the reason it failed."""

    identifier: str
    vector: Optional[np.ndarray] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.vector is not None


@dataclass
class CorpusReport:
    """Per-image results of a batch plus the corpus built from the successes."""

    results: List[ExtractionResult] = field(default_factory=list)
    corpus: Corpus = field(default_factory=Corpus)

    @property
    def failures(self) -> List[ExtractionResult]:
        return [r for r in self.results if not r.ok]

    @property
    def processed(self) -> int:
        return len(self.corpus)

    @property
    def errors(self) -> int:
        return len(self.failures)


def _extract_one(identifier: str,
                 raw: RawImage,
                 extractor: FeatureExtractor,
                 config: PreprocessConfig,
                 timeout: Optional[float]) -> ExtractionResult:
    try:
        tensor = preprocess(raw, config)
        vector = extract(tensor, extractor, timeout=timeout)
    except (InvalidImageError, ExtractionError) as e:
        return ExtractionResult(identifier, error=str(e))
    return ExtractionResult(identifier, vector=vector)


def extract_corpus(images: Sequence[Tuple[str, RawImage]],
                   extractor: FeatureExtractor,
                   config: PreprocessConfig = None,
                   max_workers: int = None,
                   timeout: Optional[float] = DEFAULT_TIMEOUT) -> CorpusReport:
    """
    Extract feature vectors for a batch of images.

    Args:
        images: Sequence of (identifier, RawImage) pairs.
        extractor: Inference engine.
        config: Preprocessing config (defaults to PreprocessConfig()).
        max_workers: Thread pool size (defaults to CORPUS_WORKERS).
        timeout: Optional per-image limit in seconds on the extraction
            call, counted from when that image starts running.

    Returns:
        CorpusReport with one result per input, in input order. Images
        that failed preprocessing or extraction, timed out, or repeat an
        earlier identifier are recorded as failures and left out of the
        corpus.
    """
    config = config or PreprocessConfig()
    max_workers = max_workers or DEFAULT_WORKERS

    logger.info(f"Extracting features for {len(images)} images ({max_workers} workers)")

    results: List[ExtractionResult] = []
    seen = set()
    executor = ThreadPoolExecutor(max_workers=max_workers)
    try:
        futures = []
        for identifier, raw in images:
            if identifier in seen:
                futures.append((identifier, None))
                continue
            seen.add(identifier)
            futures.append((
                identifier,
                executor.submit(_extract_one, identifier, raw, extractor,
                                config, timeout),
            ))

        for i, (identifier, future) in enumerate(futures):
            if future is None:
                result = ExtractionResult(identifier, error="duplicate identifier")
            else:
                result = future.result()

            if not result.ok:
                logger.warning(f"Skipping {identifier}: {result.error}")
            results.append(result)

            if (i + 1) % 500 == 0:
                logger.info(f"Processed {i + 1}/{len(futures)} images")
    finally:
        executor.shutdown(wait=False, cancel_futures=True)

    corpus = Corpus(ImageFeature(r.identifier, r.vector) for r in results if r.ok)
    report = CorpusReport(results=results, corpus=corpus)

    logger.info(
        f"Corpus built: {report.processed} images, "
        f"dimension {corpus.dimension}, {report.errors} errors"
    )
    return report


def list_images(image_dir: str) -> List[str]:
    """Sorted image filenames in a directory (by extension, case-insensitive)."""
    return sorted(
        f for f in os.listdir(image_dir)
        if os.path.splitext(f)[1].lower() in IMAGE_EXTENSIONS
        and os.path.isfile(os.path.join(image_dir, f))
    )


def build_corpus(image_dir: str,
                 extractor: FeatureExtractor,
                 output_path: str = None,
                 config: PreprocessConfig = None,
                 max_workers: int = None,
                 timeout: Optional[float] = DEFAULT_TIMEOUT) -> CorpusReport:
    """
    Build a corpus from every image in a directory.

    Identifiers are the image filenames. Files that can't be read or
    decoded are reported as failures alongside extraction failures.

    Args:
        image_dir: Directory containing images.
        extractor: Inference engine.
        output_path: If given, the corpus is saved there in the text format.
        config: Preprocessing config.
        max_workers: Thread pool size.
        timeout: Optional per-image extraction limit in seconds.

    Returns:
        CorpusReport covering every image file found.
    """
    filenames = list_images(image_dir)
    logger.info(f"Building corpus from {len(filenames)} images in {image_dir}")

    images = []
    load_failures = []
    for filename in filenames:
        filepath = os.path.join(image_dir, filename)
        try:
            images.append((filename, load_image(filepath)))
        except (InvalidImageError, OSError) as e:
            logger.warning(f"Could not read {filename}: {e}")
            load_failures.append(ExtractionResult(filename, error=str(e)))

    report = extract_corpus(
        images, extractor, config=config,
        max_workers=max_workers, timeout=timeout,
    )
    order = {filename: i for i, filename in enumerate(filenames)}
    report.results = sorted(load_failures + report.results,
                            key=lambda r: order[r.identifier])

    if output_path:
        save_corpus(report.corpus, output_path)

    return report
