import os

import uvicorn

from velopass.config import settings
from utils.logging_utils import get_tagged_logger, setup_logging

logger = get_tagged_logger(__name__, tag="server")


if __name__ == "__main__":
    setup_logging(level=settings.log_level, job_name="velopass-server")
    logger.info("Uploads are staged in %s", os.path.abspath(settings.upload_dir))

    uvicorn.run(
        "velopass.main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 4000)),
        reload=False,
    )
