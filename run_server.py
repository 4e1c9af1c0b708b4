#!/usr/bin/env python3
"""Run the dushi progress API server."""

import logging
import os

import uvicorn


def main():
    logging.basicConfig(level=os.environ.get('DUSHI_LOG_LEVEL', 'INFO'))
    print("Starting Dushi progress API server...")
    print("API documentation available at: http://localhost:8000/docs")
    uvicorn.run(
        "server.app:app",
        host="0.0.0.0",
        port=int(os.environ.get('PORT', '8000')),
        reload=os.environ.get('DUSHI_RELOAD', '0') == '1'
    )


if __name__ == "__main__":
    main()
