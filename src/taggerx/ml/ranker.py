"""Turn raw model scores into ranked, thresholded tag lists."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray

    from taggerx.ml.tags import TagRecord


@dataclass(frozen=True)
class RankedTag:
    """A predicted tag and its probability."""

    tag: TagRecord
    probability: float


@dataclass(frozen=True)
class ImageTagResult:
    """Predictions for one image, sorted by descending probability."""

    index: int
    file_name: str
    tags: list[RankedTag] = field(default_factory=list)

    @property
    def names(self) -> list[str]:
        return [ranked.tag.name for ranked in self.tags]


def sigmoid(x: NDArray[np.floating]) -> NDArray[np.floating]:
    # exp overflows to inf for very negative logits, which still yields 0
    with np.errstate(over="ignore"):
        return 1.0 / (1.0 + np.exp(-x))


class InferenceRanker:
    """Sigmoid, drop reserved classes, rank and cut each score row at a threshold."""

    def __init__(self, tags: Sequence[TagRecord], threshold: float = 0.30, reserved_classes: int = 4) -> None:
        if reserved_classes < 0:
            raise ValueError(f"reserved_classes must be non-negative, got {reserved_classes}")
        self._tags = tuple(tags)
        self._threshold = threshold
        self._reserved = reserved_classes

    @property
    def threshold(self) -> float:
        return self._threshold

    @property
    def num_classes(self) -> int:
        """Number of model output columns this ranker expects."""
        return self._reserved + len(self._tags)

    def probabilities(self, scores: NDArray[np.floating]) -> NDArray[np.float32]:
        """Return sigmoid probabilities of the usable tag columns, shape (B, len(tags)).

        Raises:
            ValueError: If the score matrix width does not match the tag list.
        """
        scores = np.asarray(scores, dtype=np.float32)
        if scores.ndim != 2:
            raise ValueError(f"Expected a (batch, classes) score matrix, got shape {scores.shape}")
        if scores.shape[1] != self.num_classes:
            raise ValueError(
                f"Model returned {scores.shape[1]} classes but {len(self._tags)} tags + "
                f"{self._reserved} reserved classes were configured"
            )
        return sigmoid(scores)[:, self._reserved :]

    def rank(self, scores: NDArray[np.floating]) -> list[list[RankedTag]]:
        """Rank every row of a (B, num_classes) raw score matrix."""
        return [self._rank_probabilities(row) for row in self.probabilities(scores)]

    def rank_row(self, scores: NDArray[np.floating]) -> list[RankedTag]:
        """Rank a single raw score row of length ``num_classes``."""
        return self.rank(np.asarray(scores)[np.newaxis, :])[0]

    def _rank_probabilities(self, probs: NDArray[np.float32]) -> list[RankedTag]:
        # stable sort on the negated values keeps ties in ascending column order
        order = np.argsort(-probs, kind="stable")
        count = int(np.count_nonzero(probs > self._threshold))
        return [RankedTag(tag=self._tags[j], probability=float(probs[j])) for j in order[:count]]
