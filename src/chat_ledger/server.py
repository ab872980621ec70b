"""FastAPI application receiving chat captures and serving stored conversations."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field

from . import __version__
from .capture import CaptureService, ConversationConflict, create_service
from .config import configure_logging, load_config
from .identity import identify
from .segmenter import segment_with_strategy
from .store import ConversationStore


# -----------------------------
# Pydantic request/response
# -----------------------------
class CaptureRequest(BaseModel):
    text: str = Field(..., description="Raw text copied or exported from a chat panel.")


class MessageModel(BaseModel):
    role: str
    content: str
    timestamp: str
    metadata: Optional[Dict[str, Any]] = None


class SegmentResponse(BaseModel):
    identity: Optional[str] = None
    strategy: str
    messages: List[MessageModel]


class CaptureResponse(BaseModel):
    plan: str
    reference: str
    identity: str
    strategy: str
    message_count: int
    new_messages: int


class ConversationResponse(BaseModel):
    reference: str
    identity: str
    created_at: str
    updated_at: str
    messages: List[MessageModel]


# -----------------------------
# App factory
# -----------------------------
def create_app(
    config_path: Optional[str] = None,
    store: Optional[ConversationStore] = None,
    service: Optional[CaptureService] = None,
) -> FastAPI:
    cfg = load_config(config_path)
    configure_logging(cfg)

    # CORS
    cors_origins = cfg.get("server", {}).get("cors_origins", ["*"])

    # Services
    service = service or create_service(cfg, store)
    store = service.store

    app = FastAPI(title="Chat Ledger", version=__version__)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    def health() -> Dict[str, Any]:
        return {
            "ok": True,
            "data_dir": str(store.root),
            "on_unrelated": service.on_unrelated,
            "config_keys": list(cfg.keys()),
        }

    @app.get("/config")
    def get_config() -> JSONResponse:
        return JSONResponse(dict(cfg))

    @app.post("/segment", response_model=SegmentResponse)
    def preview(req: CaptureRequest):
        """Segment without touching storage."""
        strategy, messages = segment_with_strategy(req.text)
        return SegmentResponse(
            identity=identify(messages) if messages else None,
            strategy=strategy,
            messages=[MessageModel(**m) for m in messages],
        )

    @app.post("/captures", response_model=CaptureResponse)
    def capture(req: CaptureRequest):
        if not (req.text or "").strip():
            raise HTTPException(status_code=400, detail="Capture text cannot be empty.")
        try:
            result = service.capture(req.text)
        except ConversationConflict as e:
            raise HTTPException(
                status_code=409,
                detail={"error": str(e), "identity": e.identity, "reference": e.reference},
            )
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return CaptureResponse(**result.to_dict())

    @app.get("/conversations")
    def list_conversations() -> List[Dict[str, Any]]:
        return store.list_conversations()

    @app.get("/conversations/{reference}", response_model=ConversationResponse)
    def get_conversation(reference: str):
        convo = store.load(reference)
        if convo is None:
            raise HTTPException(status_code=404, detail=f"Unknown conversation {reference}.")
        return ConversationResponse(
            reference=convo.reference,
            identity=convo.identity,
            created_at=convo.created_at,
            updated_at=convo.updated_at,
            messages=[MessageModel(**m) for m in convo.messages],
        )

    @app.get("/conversations/{reference}/markdown", response_class=PlainTextResponse)
    def get_markdown(reference: str, simple: bool = Query(default=False)):
        text = store.export_markdown(reference, simple=simple)
        if text is None:
            raise HTTPException(status_code=404, detail=f"Unknown conversation {reference}.")
        return PlainTextResponse(text, media_type="text/markdown")

    @app.delete("/conversations/{reference}")
    def delete_conversation(reference: str) -> Dict[str, Any]:
        if not store.delete(reference):
            raise HTTPException(status_code=404, detail=f"Unknown conversation {reference}.")
        return {"deleted": reference}

    return app
