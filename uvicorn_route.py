#!/usr/bin/env python3
import uvicorn
from simpus.configs import HOST, PORT, LOG_LEVEL

if __name__ == "__main__":
    print(f"Starting uvicorn server on {HOST}:{PORT}...")
    uvicorn.run("simpus.app:app", host=HOST, port=PORT, log_level=LOG_LEVEL)
