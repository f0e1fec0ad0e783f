#!/usr/bin/env python3
"""
Local development server for the payment inbox API.
Run a worker alongside it:  celery -A payment_inbox.infrastructure.celery_app worker -Q webhooks -B
"""

import os
import sys
from pathlib import Path

# Load environment variables from .env file
from dotenv import load_dotenv
load_dotenv()

# Add src to Python path
current_dir = Path(__file__).parent
src_dir = current_dir / "src"
sys.path.insert(0, str(src_dir))

os.environ.setdefault('ENVIRONMENT', 'development')
if not os.getenv('STRIPE_WEBHOOK_SECRET'):
    print("WARNING: STRIPE_WEBHOOK_SECRET is not set; /webhooks/stripe will answer 500")
if not os.getenv('STRIPE_TARGET_COMPANY_ID'):
    print("WARNING: STRIPE_TARGET_COMPANY_ID is not set; checkout events will fail and retry")

if __name__ == "__main__":
    import uvicorn

    print("Starting payment inbox API")
    print("Docs: http://localhost:8000/docs")
    print("Health: http://localhost:8000/health")
    print("Press Ctrl+C to stop\n")

    uvicorn.run(
        "payment_inbox.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )
