"""Control API for runtime management using FastAPI."""
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel
import logging
import time

logger = logging.getLogger(__name__)


class LogLevelRequest(BaseModel):
    """Request to change log level."""
    level: str


class ControlAPI:
    """FastAPI-based control API for a running reporter."""

    def __init__(self, reporter, period_s: float = None):
        """
        Initialize control API.

        Args:
            reporter: The reporter being controlled
            period_s: Reporting period, shown in the status
        """
        self.reporter = reporter
        self.period_s = period_s
        self.start_time = time.time()
        self.app = FastAPI(title="dogreporter Control API")

        # Setup routes
        self._setup_routes()

    def _setup_routes(self):
        """Setup API routes."""

        @self.app.get("/healthz")
        async def healthz():
            """Health check endpoint."""
            return {"status": "healthy", "timestamp": time.time()}

        @self.app.get("/status")
        def status():
            """Get current reporter status."""
            last_result = self.reporter.last_result
            translator = self.reporter.translator
            return {
                "uptime_seconds": time.time() - self.start_time,
                "running": self.reporter.running,
                "cycle_count": self.reporter.cycle_count,
                "last_result": last_result.to_dict() if last_result else None,
                "config": {
                    "period_s": self.period_s,
                    "host": translator.host,
                    "prefix": self.reporter.prefix,
                    "tags": list(self.reporter.tags),
                    "expansions": sorted(str(e) for e in translator.expansions),
                    "rate_unit": translator.rate_unit.label,
                    "duration_unit": translator.duration_unit.label,
                },
            }

        @self.app.post("/control/report")
        def report_now():
            """Run a report cycle immediately."""
            logger.info("Manual report requested")
            result = self.reporter.report()
            if not result.success:
                raise HTTPException(status_code=502, detail=result.to_dict())
            return result.to_dict()

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
