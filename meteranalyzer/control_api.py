"""Control API for runtime management using FastAPI."""
from typing import Dict, List, Optional
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field
import logging
import time

from meteranalyzer.errors import ValidationError
from meteranalyzer.family import Context, DownsamplingType
from meteranalyzer.series import Sample

logger = logging.getLogger(__name__)


class SamplePayload(BaseModel):
    """One raw sample as sent by a producer."""
    timestamp: int
    value: float
    labels: Dict[str, str] = Field(default_factory=dict)


class IngestRequest(BaseModel):
    """Request to replace the current family of a metric."""
    metric: str
    samples: List[SamplePayload]
    downsampling: Optional[DownsamplingType] = None


class LogLevelRequest(BaseModel):
    """Request to change log level."""
    level: str


class ControlAPI:
    """FastAPI-based control API for the analyzer engine."""

    def __init__(self, engine):
        """
        Initialize control API.

        Args:
            engine: Reference to the analyzer engine
        """
        self.engine = engine
        self.app = FastAPI(title="Meter Analyzer Control API")

        self._setup_routes()

    def _setup_routes(self):
        """Setup API routes."""

        @self.app.get("/healthz")
        async def healthz():
            """Health check endpoint."""
            return {"status": "healthy", "timestamp": time.time()}

        @self.app.get("/status")
        async def status():
            """Get current engine status."""
            return {
                "uptime_seconds": time.time() - self.engine.start_time,
                "evaluation_count": self.engine.evaluation_count,
                "sources": sorted(self.engine.sources.keys()),
                "rules": [rule.name for rule in self.engine.config.rules],
                "results": {
                    name: len(family) for name, family in self.engine.snapshot().items()
                },
                "config": {
                    "evaluation_interval_s": self.engine.config.global_.evaluation_interval_s,
                    "miss_policy": self.engine.config.lookback.miss_policy.value,
                },
            }

        @self.app.post("/ingest")
        async def ingest(request: IngestRequest):
            """Replace the current family of a metric."""
            context = Context(downsampling=request.downsampling) if request.downsampling else None
            try:
                family = self.engine.ingest(
                    request.metric,
                    [Sample(s.timestamp, s.value, s.labels) for s in request.samples],
                    context,
                )
            except ValidationError as e:
                raise HTTPException(status_code=400, detail=str(e))

            return {"status": "ingested", "metric": request.metric, "samples": len(family)}

        @self.app.post("/evaluate")
        def evaluate():
            """Evaluate every rule now."""
            evaluated = self.engine.evaluate()
            failed = [rule.name for rule in self.engine.config.rules if rule.name not in evaluated]
            return {
                "status": "evaluated",
                "results": {name: len(family) for name, family in evaluated.items()},
                "failed": failed,
            }

        @self.app.get("/families/{name}")
        async def get_family(name: str):
            """Latest family for a rule or an ingested metric."""
            known = name in self.engine.snapshot() or name in self.engine.sources
            if not known:
                raise HTTPException(status_code=404, detail=f"Family '{name}' not found")
            return self.engine.family(name).to_dict()

        @self.app.post("/control/loglevel")
        async def set_log_level(request: LogLevelRequest):
            """Change log level at runtime."""
            level = request.level.upper()

            if level not in ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
                raise HTTPException(
                    status_code=400,
                    detail=f"Invalid log level: {level}"
                )

            logging.getLogger().setLevel(getattr(logging, level))
            logger.info(f"Log level changed to: {level}")

            return {
                "status": "log_level_changed",
                "level": level,
                "timestamp": time.time()
            }

    def run(self, host: str = "0.0.0.0", port: int = 8081):
        """Run the API server."""
        import uvicorn
        uvicorn.run(self.app, host=host, port=port, log_level="info")
