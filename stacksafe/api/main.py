"""
StackSafe Engine - FastAPI REST API
"""
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from typing import List, Optional, Dict, Any
from datetime import datetime
import logging

from config.settings import API_HOST, API_PORT, API_TITLE, API_VERSION, LOG_LEVEL, LOG_FORMAT
from stacksafe.core.errors import InvalidStackItem
from stacksafe.core.models import Dose, ItemRole, Severity, StackItem
from stacksafe.core.analysis_service import get_analysis_service, StackAnalysisService
from stacksafe.core import health_score

logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT, force=True)
logger = logging.getLogger(__name__)


# Pydantic models for API
class DoseRequest(BaseModel):
    value: float = Field(..., gt=0)
    unit: str = Field(..., min_length=1)


class StackItemRequest(BaseModel):
    name: str = Field(..., min_length=1)
    dose: Optional[DoseRequest] = None
    role: ItemRole = ItemRole.SUPPLEMENT
    item_id: Optional[str] = None


class StackAnalysisRequest(BaseModel):
    items: List[StackItemRequest] = []


class NormalizeRequest(BaseModel):
    names: List[str]


class ScoreRequest(BaseModel):
    overall_risk_level: Severity = Severity.NONE
    interaction_count: int = Field(0, ge=0)
    warning_count: int = Field(0, ge=0)
    stack_size: int = Field(0, ge=0)


class ScoreResponse(BaseModel):
    score: int
    label: str


class StackAnalysisResponse(BaseModel):
    overall_risk_level: str
    overall_safe: bool
    is_complete: bool
    score: int
    score_label: str
    stack_size: int
    analyzed_items: int
    interactions: List[Dict[str, Any]]
    nutrient_warnings: List[Dict[str, Any]]
    summary: Dict[str, int]
    recommendations: List[str]
    timing_guidance: List[str]
    issues: List[Dict[str, str]]
    nutrient_totals: Dict[str, float]
    analysis_time_ms: float
    analyzed_at: str


class HealthCheckResponse(BaseModel):
    status: str
    version: str
    knowledge_base_version: str
    rules_loaded: int
    timestamp: str


# Create FastAPI app
app = FastAPI(
    title=API_TITLE,
    description="Rule-based interaction and nutrient upper-limit checks for supplement and medication stacks.",
    version=API_VERSION,
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Global state
analysis_service: Optional[StackAnalysisService] = None


@app.on_event("startup")
async def startup_event():
    """Load the knowledge base; a load failure aborts startup"""
    global analysis_service
    logger.info(f"Starting {API_TITLE}...")
    analysis_service = get_analysis_service()
    logger.info("Analysis service initialized")


def _service() -> StackAnalysisService:
    if analysis_service is None:
        raise HTTPException(status_code=503, detail="Knowledge base not loaded")
    return analysis_service


@app.get("/", tags=["Health"])
async def root():
    """Root endpoint"""
    return {
        "name": API_TITLE,
        "version": API_VERSION,
        "status": "operational",
        "docs": "/docs"
    }


@app.get("/health", response_model=HealthCheckResponse, tags=["Health"])
async def health_check():
    """Health check endpoint"""
    loaded = analysis_service is not None
    kb = analysis_service.knowledge_base if loaded else None
    return HealthCheckResponse(
        status="healthy" if loaded else "initializing",
        version=API_VERSION,
        knowledge_base_version=kb.version if kb else "",
        rules_loaded=len(kb.rules) if kb else 0,
        timestamp=datetime.now().isoformat()
    )


@app.get("/knowledge-base/statistics", tags=["Knowledge Base"])
async def knowledge_base_statistics():
    """Rule and nutrient-limit counts"""
    return _service().knowledge_base.get_statistics()


@app.get("/knowledge-base/nutrients/{nutrient_key}", tags=["Knowledge Base"])
async def get_nutrient(nutrient_key: str):
    """Upper limit and reference information for one nutrient"""
    info = _service().get_nutrient_info(nutrient_key)
    if not info:
        raise HTTPException(status_code=404, detail="Nutrient not found")
    return info


@app.post("/normalize", tags=["Analysis"])
async def normalize(request: NormalizeRequest):
    """Resolve free-form names to canonical ingredient keys (null when unknown)"""
    return {"results": _service().normalize_names(request.names)}


@app.post("/analyze/stack", response_model=StackAnalysisResponse, tags=["Analysis"])
async def analyze_stack(request: StackAnalysisRequest):
    """
    Analyze a full stack for interactions and nutrient excesses.

    Items that cannot be recognized or converted are listed under `issues`;
    `is_complete` is false whenever any part of the stack went unanalyzed.
    """
    stack = [
        StackItem(
            name=item.name,
            role=item.role,
            dose=Dose(item.dose.value, item.dose.unit) if item.dose else None,
            item_id=item.item_id,
        )
        for item in request.items
    ]

    try:
        analysis = _service().analyze(stack)
    except InvalidStackItem as e:
        raise HTTPException(status_code=422, detail=str(e))

    result = analysis.result.to_dict()
    return StackAnalysisResponse(
        overall_risk_level=result["overall_risk_level"],
        overall_safe=result["overall_safe"],
        is_complete=analysis.is_complete,
        score=analysis.score,
        score_label=analysis.score_label,
        stack_size=analysis.stack_size,
        analyzed_items=analysis.analyzed_items,
        interactions=result["interactions"],
        nutrient_warnings=result["nutrient_warnings"],
        summary=result["summary"],
        recommendations=analysis.recommendations,
        timing_guidance=analysis.timing_guidance,
        issues=[issue.to_dict() for issue in analysis.issues],
        nutrient_totals=analysis.nutrient_totals,
        analysis_time_ms=analysis.analysis_time_ms,
        analyzed_at=datetime.now().isoformat(),
    )


@app.post("/analyze/score", response_model=ScoreResponse, tags=["Analysis"])
async def stack_score(request: ScoreRequest):
    """Health score from a result summary"""
    value = health_score.score_from_counts(
        request.overall_risk_level,
        request.interaction_count,
        request.warning_count,
        request.stack_size,
    )
    return ScoreResponse(score=value, label=health_score.score_label(value))


# Main entry point for running directly
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=API_HOST, port=API_PORT)
