"""
Study Buddy gateway package.

Provides:
- Firebase-authenticated HTTP gateway (FastAPI) in front of Gemini
- API-key rotation and ordered key fallback across several Gemini keys
- Local CLI for running the generation pipeline without HTTP
"""
