"""Decoding of the expression and age/gender network heads."""

from __future__ import annotations

from typing import Sequence

import numpy as np

from .errors import InvalidInputError
from .types import EXPRESSION_LABELS, AgeAndGender, FaceExpressions

GENDER_LABELS = ("male", "female")


def softmax(logits: Sequence[float]) -> np.ndarray:
    values = np.asarray(logits, dtype=np.float64).reshape(-1)
    shifted = np.exp(values - np.max(values))
    return shifted / np.sum(shifted)


def decode_expressions(logits: Sequence[float]) -> FaceExpressions:
    probs = softmax(logits)
    if probs.size != len(EXPRESSION_LABELS):
        raise InvalidInputError(
            f"expected {len(EXPRESSION_LABELS)} expression logits, got {probs.size}"
        )
    return FaceExpressions({label: float(p) for label, p in zip(EXPRESSION_LABELS, probs)})


def decode_age_gender(age: float, gender_logits: Sequence[float]) -> AgeAndGender:
    probs = softmax(gender_logits)
    if probs.size != len(GENDER_LABELS):
        raise InvalidInputError(f"expected 2 gender logits, got {probs.size}")
    idx = int(np.argmax(probs))
    return AgeAndGender(
        age=float(np.asarray(age).reshape(-1)[0]),
        gender=GENDER_LABELS[idx],
        gender_probability=float(probs[idx]),
    )
