import logging
import os
from typing import Any, Callable, Dict, Optional

from flask import Flask

from config import Config
from llm_wrappers import ExtractionClient


def create_app(test_config: Optional[Dict[str, Any]] = None,
               client_factory: Callable[[str], ExtractionClient] = ExtractionClient) -> Flask:
    app = Flask(
        __name__,
        template_folder=os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'templates'),
    )
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)
    app.secret_key = app.config['SECRET_KEY']

    # --- Logging Configuration ---
    logging.basicConfig(level=app.config['LOG_LEVEL'], format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    from app.workspace import WorkspaceRegistry
    app.extensions['workspaces'] = WorkspaceRegistry(app.config['CREDENTIAL_DIR'], client_factory)

    from app.routes import routes_bp
    app.register_blueprint(routes_bp, url_prefix="")

    app.logger.info(f"Invoice extractor ready (provider={app.config['LLM_PROVIDER']})")
    return app
