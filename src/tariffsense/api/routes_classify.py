from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from tariffsense.tariff.engine import ClassificationEngine, default_engine
from tariffsense.tariff.models import ClassificationResult, ClassifyRequestModel, DutyRateModel
from tariffsense.tariff.taxonomy import normalize_code

router = APIRouter(prefix="/api", tags=["classification"])


def get_engine() -> ClassificationEngine:
    return default_engine()


@router.post("/classify", response_model=ClassificationResult)
def classify_product(
    request: ClassifyRequestModel,
    engine: ClassificationEngine = Depends(get_engine),
) -> ClassificationResult:
    """Classify a product description; ``needs_input`` results carry questions."""

    if not request.description.strip():
        raise HTTPException(status_code=422, detail="description must not be blank")
    return engine.classify(
        request.description,
        material=request.material,
        origin=request.origin.upper() if request.origin else None,
        previous_answers=request.previous_answers,
        answered_rounds=request.answered_rounds,
    )


@router.get("/duty/{code}", response_model=DutyRateModel)
def duty_for_code(
    code: str,
    origin: Optional[str] = Query(default=None, min_length=2, max_length=2),
    engine: ClassificationEngine = Depends(get_engine),
) -> DutyRateModel:
    """Stacked duty for an HTS code from ``origin``."""

    if normalize_code(code) not in engine.store:
        raise HTTPException(status_code=404, detail=f"Unknown HTS code {code}")
    return engine.resolver.resolve(code, origin.upper() if origin else None)
