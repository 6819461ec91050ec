from fastapi import FastAPI

from fleet_scheduler.api.routes.executors import router as executors_router
from fleet_scheduler.container import SchedulerContainer


def create_app(container: SchedulerContainer) -> FastAPI:
    app = FastAPI(title="Fleet Scheduler API")
    app.state.container = container

    @app.get("/health")
    def health():
        status = container.coordinator.status()
        return {
            "status": "ok" if status.store_ready and status.connected else "degraded",
            "store_ready": status.store_ready,
            "connected": status.connected,
        }

    app.include_router(executors_router)
    return app
