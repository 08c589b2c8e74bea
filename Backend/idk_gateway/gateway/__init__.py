"""
AI Gateway Package.

The gateway provides a unified OpenAI-compatible API for routing requests
to many upstream AI providers.

Features:
- OpenAI-compatible endpoints (/v1/chat/completions, /v1/embeddings, etc.)
- 20 provider adapters translating requests, responses and streams
- Single, fallback, load-balanced and conditional routing
- Retries with retry-after support and per-target timeouts
- Request logging through a pluggable storage connector
- Custom host validation

Architecture:
- adapters: per-provider parameter tables and transforms
- routing: routing config header and target selection
- services: request building, dispatch, response and stream handling
- routers: FastAPI endpoints
"""
