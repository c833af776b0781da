import logging
import numpy as np
from typing import List, Optional, Union

from offsite_api.common.errors import FaceEngineUnavailable

logger = logging.getLogger(__name__)


class FaceEngine:
    """
    Embedding extraction (DeepFace) and cosine-similarity matching.
    Site apps may also send embeddings computed on device; matching only
    needs numpy.
    """

    MODEL_NAME = "Facenet512"
    DETECTOR_BACKEND = "opencv"

    @staticmethod
    def get_embedding(image_path_or_data: Union[str, np.ndarray]) -> Optional[List[float]]:
        """
        Embedding for the single face in the image.
        Returns None if no face or multiple faces found.
        """
        # deepface pulls in tensorflow; import only when a photo is enrolled
        try:
            from deepface import DeepFace
        except ImportError:
            logger.error("DeepFace not installed; install the `face` extra to enrol from photos.")
            raise FaceEngineUnavailable()

        try:
            results = DeepFace.represent(
                img_path=image_path_or_data,
                model_name=FaceEngine.MODEL_NAME,
                enforce_detection=True,
                detector_backend=FaceEngine.DETECTOR_BACKEND,
            )
        except ValueError as ve:
            # raised when no face could be detected
            logger.warning("Face detection failed: %s", ve)
            return None

        if not results:
            logger.warning("No face detected.")
            return None
        if len(results) > 1:
            logger.warning("Multiple faces detected: %s", len(results))
            return None
        return results[0]["embedding"]

    @staticmethod
    def compute_similarity(emb1: List[float], emb2: List[float]) -> float:
        """
        Cosine similarity between two embeddings, -1..1 (1 means identical).
        """
        a = np.asarray(emb1, dtype=float)
        b = np.asarray(emb2, dtype=float)
        if a.shape != b.shape:
            return 0.0

        norm_a = np.linalg.norm(a)
        norm_b = np.linalg.norm(b)
        if norm_a == 0 or norm_b == 0:
            return 0.0

        return float(np.dot(a, b) / (norm_a * norm_b))

    @staticmethod
    def best_match(probe: List[float], gallery: dict, threshold: float):
        """
        gallery: {labour_id: embedding}. Returns (labour_id, score) of the best
        candidate at or above threshold, else (None, best_score).
        """
        best_id, best = None, -1.0
        for key, emb in gallery.items():
            if not emb:
                continue
            score = FaceEngine.compute_similarity(probe, emb)
            if score > best:
                best_id, best = key, score
        if best_id is not None and best >= threshold:
            return best_id, best
        return None, best
