"""To test run: python -m src.livechat.api.main
Interact via SwaggerUi: http://localhost:8000/chat/docs
"""

import logging
import logfire
import uvicorn
from src.livechat.utils.logging import setup_logging
from src.livechat.api.deps import get_config
from src.livechat.api.factory import create_app

setup_logging()
logfire.configure(send_to_logfire='if-token-present')
logger = logging.getLogger(__name__)
cfg = get_config()

app = create_app(cfg)


def main() -> None:
    """Main function to run the FastAPI server."""
    uvicorn.run(
        "src.livechat.api.main:app",
        host=cfg.api.host,
        port=cfg.api.port,
        reload=cfg.api.reload,
    )


if __name__ == "__main__":
    main()
