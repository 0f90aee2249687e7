"""
Client Portal Backend — Serverless Entry Point
===============================================

What:  Lambda-style handler wrapping the FastAPI app.
How:   Mangum translates API Gateway / Function URL / Vercel events into ASGI
       requests and the responses back.

lifespan="off": serverless runtimes freeze the process between invocations,
so logging is configured here at cold start and the Notion client is opened
lazily on first use.
"""

from mangum import Mangum

from portal.main import app, setup_logging

setup_logging()

handler = Mangum(app, lifespan="off")
