"""Run the sign-in and session-provisioning API."""

import logging

import uvicorn

from voicevisit.api_server import app
from voicevisit.config import Config

if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format='%(levelname)-8s | %(message)s',
    )

    uvicorn.run(app, host=Config.HOST, port=Config.PORT)
