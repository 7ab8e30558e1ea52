"""Clients for the auxiliary 0..1 performance predictor."""

from __future__ import annotations

import logging
import math
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Callable, Dict, Optional, Sequence

import requests
from pydantic import ValidationError

from schemas import PredictionResponse

logger = logging.getLogger(__name__)

FEATURE_COUNT = 5
FEATURE_NAMES = (
    "mean_recent_performance",
    "mean_recent_time_spent",
    "mean_recent_difficulty",
    "recent_success_rate",
    "last_delta",
)


def _valid_features(features: Sequence[float]) -> bool:
    if len(features) != FEATURE_COUNT:
        return False
    return all(isinstance(value, (int, float)) and math.isfinite(value) for value in features)


class HttpPerformancePredictor:
    """POSTs ``{"features": [...]}`` and reads ``{"prediction": float}``.

    Any transport error, timeout, non-2xx status or malformed body yields
    ``None`` so callers treat the prediction as absent.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 2.0,
        headers: Optional[Dict[str, str]] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self.headers = dict(headers or {})
        self._http = session or requests

    def predict(self, features: Sequence[float]) -> Optional[float]:
        if not _valid_features(features):
            logger.debug("Skipping prediction for malformed feature vector: %r", features)
            return None
        payload = {"features": [float(value) for value in features], "feature_names": list(FEATURE_NAMES)}
        try:
            response = self._http.post(self.url, json=payload, headers=self.headers or None, timeout=self.timeout)
            response.raise_for_status()
            body: Any = response.json()
        except requests.Timeout:
            logger.warning("Performance predictor timed out after %.2fs", self.timeout)
            return None
        except (requests.RequestException, ValueError) as exc:
            logger.warning("Performance predictor request failed: %s", exc)
            return None
        try:
            return PredictionResponse.model_validate(body).prediction
        except ValidationError as exc:
            logger.warning("Performance predictor returned an invalid body: %s", exc.errors()[:1])
            return None


class TimeoutPredictor:
    """Runs any ``features -> float | None`` callable with a hard deadline.

    A call that misses the deadline keeps its worker thread until the callable
    returns; Python threads cannot be interrupted. After ``max_workers``
    consecutive timeouts every worker may be stuck, so the pool is abandoned
    and later calls go to a fresh one. Abandoned threads finish in the
    background and still hold their resources until then.
    """

    def __init__(
        self,
        predict: Callable[[Sequence[float]], Optional[float]],
        *,
        timeout: float = 2.0,
        max_workers: int = 2,
    ) -> None:
        self._predict = predict
        self.timeout = timeout
        self.max_workers = max_workers
        self._executor = self._new_executor()
        self._timeouts = 0
        self._state_lock = threading.Lock()

    def _new_executor(self) -> ThreadPoolExecutor:
        return ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="predictor")

    def _record_timeout(self) -> None:
        with self._state_lock:
            self._timeouts += 1
            if self._timeouts < self.max_workers:
                return
            stale, self._executor = self._executor, self._new_executor()
            count, self._timeouts = self._timeouts, 0
        logger.warning("Replacing prediction workers after %d consecutive timeouts", count)
        stale.shutdown(wait=False, cancel_futures=True)

    def predict(self, features: Sequence[float]) -> Optional[float]:
        with self._state_lock:
            executor = self._executor
        try:
            future = executor.submit(self._predict, list(features))
        except RuntimeError:
            logger.warning("Prediction pool was shut down; treating as absent")
            return None
        try:
            value = future.result(timeout=self.timeout)
        except FutureTimeoutError:
            future.cancel()
            logger.warning("Prediction exceeded %.2fs; treating as absent", self.timeout)
            self._record_timeout()
            return None
        except Exception:
            logger.warning("Prediction callable raised; treating as absent", exc_info=True)
            return None
        with self._state_lock:
            self._timeouts = 0
        if value is None:
            return None
        try:
            number = float(value)
        except (TypeError, ValueError):
            return None
        if not math.isfinite(number):
            return None
        return max(0.0, min(1.0, number))

    def close(self) -> None:
        with self._state_lock:
            executor = self._executor
        executor.shutdown(wait=False, cancel_futures=True)


__all__ = ["FEATURE_NAMES", "HttpPerformancePredictor", "TimeoutPredictor"]
