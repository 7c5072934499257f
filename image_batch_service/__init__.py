"""
Batch image recompression service package.

Exposes the job runner that fetches, recompresses and stores every image of
a submitted product batch, the job store adapters, the completion webhook
notifier, and the FastAPI application serving uploads and status queries.
"""
