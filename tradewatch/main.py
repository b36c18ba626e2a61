import os
from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles
from tradewatch.api.routes import router as api_router
from tradewatch.scheduler import RecurringJobRegistry, RegistryContext
from tradewatch.services import build_orchestrator
from tradewatch.settings import load_settings
from tradewatch.utils import add_file_handler, logger


def create_app(context=None, orchestrator=None, settings=None):
    """Build the API.

    With no arguments the app bootstraps itself on startup from the
    environment; tests pass a ready context and orchestrator instead.
    """
    app = FastAPI(title="tradewatch")
    app.include_router(api_router)

    static_dir = settings.static_dir if settings else os.getenv("STATIC_DIR", "public")
    if os.path.isdir(static_dir):
        app.mount("/", StaticFiles(directory=static_dir, html=True), name="static")

    if context is not None:
        app.state.context = context
        app.state.orchestrator = orchestrator
        app.state.registry = RecurringJobRegistry(context, orchestrator)

    @app.on_event("startup")
    def on_startup():
        if context is not None:
            return
        cfg = settings or load_settings()
        if cfg.log_file:
            add_file_handler(cfg.log_file)
        # a store we cannot reach is fatal: every job depends on it
        ctx = RegistryContext.from_settings(cfg)
        orch = build_orchestrator(cfg, context=ctx)
        registry = RecurringJobRegistry(ctx, orch)
        ctx.start()
        count = registry.load_persisted()
        logger.info("Loaded %d persisted jobs", count)
        app.state.context = ctx
        app.state.orchestrator = orch
        app.state.registry = registry

    @app.on_event("shutdown")
    def on_shutdown():
        ctx = getattr(app.state, "context", None)
        if ctx is not None and context is None:
            ctx.shutdown()

    return app


app = create_app()
