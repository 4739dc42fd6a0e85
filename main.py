#!/usr/bin/env python3
"""
Azure RBAC Auditor Web API
FastAPI-based JSON interface over stored RBAC audit runs
"""

import logging
from typing import Optional

import uvicorn
from fastapi import Depends, FastAPI, HTTPException
from fastapi.responses import JSONResponse

from config import get_config
from repositories import AnalysisRepository, get_analysis_repository

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Azure RBAC Auditor",
    description="Redundant and privileged Azure role assignment audit results",
    version="2.0"
)


def get_analysis_repo() -> AnalysisRepository:
    """Repository dependency, overridable in tests"""
    return get_analysis_repository()


def load_analysis_or_404(analysis_id: str, repo: AnalysisRepository):
    analysis = repo.get_analysis(analysis_id)
    if analysis is None:
        raise HTTPException(status_code=404, detail="Analysis not found")
    return analysis


@app.on_event("startup")
async def startup_event():
    """Configure logging on startup"""
    from permissions import setup_logging
    config = get_config()
    setup_logging(config.log_level, config.log_file)
    logger.info(f"Azure RBAC Auditor API starting up: debug={config.debug}, port={config.port}")


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/api/analyses")
async def list_analyses(limit: Optional[int] = None, offset: int = 0, tenant_id: Optional[str] = None,
                        repo: AnalysisRepository = Depends(get_analysis_repo)):
    """Stored runs, newest first"""
    return JSONResponse({
        "analyses": [
            {k: (v.isoformat() if hasattr(v, 'isoformat') else v) for k, v in run.items()}
            for run in repo.list_analyses(limit=limit, offset=offset, tenant_id=tenant_id)
        ]
    })


@app.get("/api/analyses/{analysis_id}")
async def get_analysis(analysis_id: str, repo: AnalysisRepository = Depends(get_analysis_repo)):
    """Full analysis payload"""
    return load_analysis_or_404(analysis_id, repo).model_dump(mode='json')


@app.get("/api/analyses/{analysis_id}/principals")
async def get_principals(analysis_id: str, privileged_only: bool = False,
                         repo: AnalysisRepository = Depends(get_analysis_repo)):
    """Principal-grouped view of a run"""
    analysis = load_analysis_or_404(analysis_id, repo)
    principals = [p for p in analysis.principals if p.has_privileged_roles or not privileged_only]
    return {"principals": [p.model_dump(mode='json') for p in principals]}


@app.get("/api/analyses/{analysis_id}/redundant")
async def get_redundant(analysis_id: str, repo: AnalysisRepository = Depends(get_analysis_repo)):
    """Grants made redundant by a broader grant of the same principal"""
    load_analysis_or_404(analysis_id, repo)
    return {"redundant_grants": repo.get_redundant_grants(analysis_id)}


@app.get("/api/analyses/{analysis_id}/statistics")
async def get_statistics(analysis_id: str, repo: AnalysisRepository = Depends(get_analysis_repo)):
    return load_analysis_or_404(analysis_id, repo).statistics.model_dump(mode='json')


@app.delete("/api/analyses/{analysis_id}")
async def delete_analysis(analysis_id: str, repo: AnalysisRepository = Depends(get_analysis_repo)):
    load_analysis_or_404(analysis_id, repo)
    if not repo.delete_analysis(analysis_id):
        raise HTTPException(status_code=500, detail="Failed to delete analysis")
    return {"status": "success", "analysis_id": analysis_id}


@app.post("/api/analyses/demo")
async def run_demo_analysis(repo: AnalysisRepository = Depends(get_analysis_repo)):
    """Analyze the built-in demo tenant and store the result"""
    from demo_data import analyze_demo_tenant

    analysis = await analyze_demo_tenant(get_config().analysis)
    if not repo.save_analysis(analysis):
        raise HTTPException(status_code=500, detail="Failed to store demo analysis")
    return {
        "status": "success",
        "analysis_id": analysis.analysis_id,
        "redundant_grants": analysis.statistics.redundant_grants,
    }


if __name__ == "__main__":
    config = get_config()
    uvicorn.run("main:app", host=config.host, port=config.port, reload=config.debug)
