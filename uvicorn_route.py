#!/usr/bin/env python3
import uvicorn
from circulate.app import app
from circulate.configs import HOST, PORT, LOG_LEVEL

if __name__ == "__main__":
    print(f"Starting uvicorn server on port {PORT}...")
    uvicorn.run(app, host=HOST, port=PORT, log_level=LOG_LEVEL)
