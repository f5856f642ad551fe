"""
PPMatch - Vector Similarity Helpers
===================================

L2 normalisation for float32 embeddings; cosine similarity is then a dot product.
"""

import numpy as np


def normalize_rows(matrix: np.ndarray) -> np.ndarray:
    """L2-normalize each row; zero rows stay zero."""
    matrix = np.asarray(matrix, dtype=np.float32)
    if matrix.ndim == 1:
        matrix = matrix.reshape(1, -1)
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    norms[norms == 0] = 1
    return matrix / norms


def normalize(vector: np.ndarray) -> np.ndarray:
    """L2-normalize a single vector."""
    return normalize_rows(vector)[0]
