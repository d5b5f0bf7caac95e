#!/usr/bin/env python3
"""
Quick runner for Case Portal
============================

Usage:
    python -m case_portal.run
"""

import uvicorn

if __name__ == "__main__":
    print("Starting Case Portal...")
    print("API docs: http://localhost:8000/docs")
    print("Health:   http://localhost:8000/health")
    print()

    uvicorn.run(
        "case_portal.api:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )
