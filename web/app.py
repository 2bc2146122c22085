"""FastAPI web application for paper digestion.

Provides batch upload, WebSocket progress/layout/explanation events, and
library, graph, layout and term-explanation endpoints. All state lives in a
single Workspace owned by the app.
"""

import asyncio
import logging
import time
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, File, HTTPException, UploadFile, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field

from decipher.config import MAX_BATCH_SIZE
from decipher.extract import ExtractionService
from decipher.graph import GraphStore, prepare_viz_data
from decipher.ingest import BatchTooLargeError, DocumentInput, Ingestor
from decipher.layout import LayoutEngine, LayoutRunner
from decipher.library import Library
from decipher.models import ExplanationLevel, ReadStatus
from decipher.resolver import TermResolver

logger = logging.getLogger(__name__)

MAX_FILE_SIZE = 50 * 1024 * 1024  # 50 MB per file
MAX_TOTAL_SIZE = 500 * 1024 * 1024  # 500 MB total per upload


class PinRequest(BaseModel):
    node_id: str
    x: float
    y: float


class ExplainRequest(BaseModel):
    fragment: str = Field(min_length=1)
    document_id: Optional[str] = None
    level: Optional[ExplanationLevel] = None
    force: bool = False


class LevelRequest(BaseModel):
    level: ExplanationLevel


class DocumentUpdate(BaseModel):
    read_status: Optional[ReadStatus] = None
    rating: Optional[int] = Field(None, ge=0, le=5)


class NoteCreate(BaseModel):
    text: str = Field(min_length=1)
    anchor: Optional[str] = None


class Workspace:
    """Library, graph and interactive components for one app instance.

    Args:
        service: ExtractionService-like object; when None an OpenAI-backed
            ExtractionService is created on first use.
        ingest_options: keyword overrides for Ingestor (delay, cooldown, ...)
    """

    def __init__(self, service=None, **ingest_options):
        self.library = Library()
        self.graph = GraphStore()
        self.layout = LayoutEngine()
        self.runner = LayoutRunner(self.layout, on_tick=self._on_layout_tick)
        self.resolver = TermResolver(self._explain, on_change=self._on_explanation)
        self.batches: dict[str, dict] = {}
        self.active_batch: Optional[str] = None
        self.connections: list[WebSocket] = []
        self._service = service
        self._ingest_options = ingest_options
        self.max_batch_size = ingest_options.get("max_batch_size", MAX_BATCH_SIZE)
        self._ingestor = None
        self._pending = set()

    @property
    def service(self):
        if self._service is None:
            from openai import OpenAI
            self._service = ExtractionService(OpenAI())
        return self._service

    @property
    def ingestor(self):
        if self._ingestor is None:
            self._ingestor = Ingestor(self.library, self.graph, self.service,
                                      **self._ingest_options)
        return self._ingestor

    def _explain(self, fragment, context, level):
        return self.service.explain_term(fragment, context, level)

    def spawn(self, coro):
        task = asyncio.get_running_loop().create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    def _on_explanation(self, snapshot):
        self.spawn(self.broadcast({"type": "explanation", **snapshot}))

    async def _on_layout_tick(self, positions):
        await self.broadcast({
            "type": "layout",
            "positions": {k: [x, y] for k, (x, y) in positions.items()},
        })

    def viz_data(self):
        return prepare_viz_data(self.graph.snapshot(), self.layout.positions())

    def refresh_layout(self):
        """Hand the latest graph snapshot to the layout and wake it if observed."""
        self.layout.set_graph(self.graph.snapshot())
        if self.connections:
            self.runner.start()

    def wake_layout(self):
        if self.connections:
            self.runner.start()

    def connect(self, websocket: WebSocket):
        self.connections.append(websocket)
        self.runner.start()

    def disconnect(self, websocket: WebSocket):
        self.connections = [ws for ws in self.connections if ws != websocket]
        if not self.connections:
            self.runner.stop()

    async def broadcast(self, message: dict):
        """Send a message to all WebSocket clients, dropping dead ones."""
        dead = []
        for ws in list(self.connections):
            try:
                await ws.send_json(message)
            except Exception:
                dead.append(ws)
        if dead:
            self.connections = [ws for ws in self.connections if ws not in dead]

    def close(self):
        self.runner.stop()
        self.resolver.close()


def create_app(service=None, **ingest_options) -> FastAPI:
    """Create and configure the FastAPI application."""
    workspace = Workspace(service, **ingest_options)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        workspace.close()

    app = FastAPI(title="Paper Decipher", lifespan=lifespan)
    app.state.workspace = workspace

    def _document_or_404(doc_id):
        try:
            return workspace.library.get(doc_id)
        except KeyError:
            raise HTTPException(status_code=404, detail="Document not found")

    @app.post("/api/upload")
    async def upload_files(files: list[UploadFile] = File(...)):
        if not files:
            raise HTTPException(status_code=400, detail="No files provided")

        if len(files) > workspace.max_batch_size:
            raise HTTPException(
                status_code=400,
                detail=str(BatchTooLargeError(len(files), workspace.max_batch_size)),
            )

        if workspace.active_batch is not None:
            raise HTTPException(
                status_code=409,
                detail="A batch is already being processed. Try again when it finishes.",
            )

        inputs = []
        total_size = 0
        for f in files:
            # Strip directory components from client-supplied names
            safe_name = Path(f.filename or "unknown").name
            if not safe_name or safe_name.startswith("."):
                continue

            content = await f.read()
            if len(content) > MAX_FILE_SIZE:
                raise HTTPException(
                    status_code=400,
                    detail=f"File '{safe_name}' exceeds {MAX_FILE_SIZE // (1024*1024)}MB limit"
                )
            total_size += len(content)
            if total_size > MAX_TOTAL_SIZE:
                raise HTTPException(
                    status_code=400,
                    detail=f"Total upload exceeds {MAX_TOTAL_SIZE // (1024*1024)}MB limit"
                )
            inputs.append(DocumentInput(safe_name, content, f.content_type))

        if not inputs:
            raise HTTPException(status_code=400, detail="No usable files provided")

        batch_id = str(uuid.uuid4())
        workspace.batches[batch_id] = {
            "batch_id": batch_id,
            "status": "processing",
            "file_count": len(inputs),
            "files": [item.name for item in inputs],
            "report": None,
            "error": None,
            "created_at": time.time(),
        }
        workspace.active_batch = batch_id

        process_batch_background(workspace, batch_id, inputs)

        return {
            "batch_id": batch_id,
            "status": "processing",
            "file_count": len(inputs),
        }

    @app.get("/api/batches/{batch_id}")
    async def get_batch(batch_id: str):
        if batch_id not in workspace.batches:
            raise HTTPException(status_code=404, detail="Batch not found")
        batch = workspace.batches[batch_id]
        return {k: v for k, v in batch.items() if k != "created_at"}

    @app.get("/api/documents")
    async def list_documents():
        return [doc.summary() for doc in workspace.library]

    @app.get("/api/documents/{doc_id}")
    async def get_document(doc_id: str):
        return _document_or_404(doc_id).model_dump(mode="json", by_alias=True)

    @app.patch("/api/documents/{doc_id}")
    async def update_document(doc_id: str, update: DocumentUpdate):
        doc = _document_or_404(doc_id)
        if update.read_status is not None:
            workspace.library.set_read_status(doc.id, update.read_status)
        if update.rating is not None:
            workspace.library.set_rating(doc.id, update.rating)
        return doc.summary() | {"rating": doc.rating}

    @app.post("/api/documents/{doc_id}/notes", status_code=201)
    async def add_note(doc_id: str, body: NoteCreate):
        doc = _document_or_404(doc_id)
        note = workspace.library.add_note(doc.id, body.text, body.anchor)
        return note.model_dump(mode="json")

    @app.get("/api/graph")
    async def get_graph():
        return workspace.viz_data()

    @app.get("/api/graph/nodes/{node_id:path}")
    async def get_node(node_id: str):
        node = workspace.graph.get(node_id)
        if node is None:
            raise HTTPException(status_code=404, detail="Concept not found")
        doc = workspace.library.find_by_concept(node.id)
        return {
            "node": node.model_dump(by_alias=True),
            "document_id": doc.id if doc else None,
        }

    @app.post("/api/layout/pin")
    async def pin_node(body: PinRequest):
        try:
            workspace.layout.pin(body.node_id, body.x, body.y)
        except KeyError:
            raise HTTPException(status_code=404, detail="Concept not in layout")
        workspace.wake_layout()
        return {"node_id": body.node_id, "x": body.x, "y": body.y, "pinned": True}

    @app.delete("/api/layout/pin/{node_id:path}")
    async def release_node(node_id: str):
        try:
            workspace.layout.release(node_id)
        except KeyError:
            raise HTTPException(status_code=404, detail="Concept not in layout")
        workspace.wake_layout()
        x, y = workspace.layout.positions()[node_id]
        return {"node_id": node_id, "x": x, "y": y, "pinned": False}

    @app.post("/api/explain")
    async def explain(body: ExplainRequest):
        context = ""
        if body.document_id is not None:
            context = _document_or_404(body.document_id).raw_text
        accepted = workspace.resolver.request(body.fragment, context, body.level,
                                              force=body.force)
        return {"accepted": accepted, **workspace.resolver.snapshot()}

    @app.put("/api/explain/level")
    async def set_level(body: LevelRequest):
        accepted = workspace.resolver.set_level(body.level)
        return {"accepted": accepted, **workspace.resolver.snapshot()}

    @app.get("/api/explain")
    async def get_explanation():
        return workspace.resolver.snapshot()

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        await websocket.accept()
        try:
            await websocket.send_json({"type": "graph", **workspace.viz_data()})
            workspace.connect(websocket)

            # Keep connection open until client disconnects
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            workspace.disconnect(websocket)

    return app


def process_batch_background(workspace: Workspace, batch_id: str,
                             inputs: list[DocumentInput]):
    """Start background processing for a batch.

    In production, this spawns a background task. For testing, it can be mocked.
    """
    workspace.spawn(_process_batch(workspace, batch_id, inputs))


async def _process_batch(workspace: Workspace, batch_id: str,
                         inputs: list[DocumentInput]):
    """Run one batch through the ingestor, broadcasting progress."""
    batch = workspace.batches[batch_id]

    async def on_progress(stage, detail, percent):
        await workspace.broadcast({
            "type": "progress",
            "batch_id": batch_id,
            "stage": stage,
            "detail": detail,
            "percent": round(percent, 1),
        })

    async def on_document(document):
        workspace.refresh_layout()
        await workspace.broadcast({"type": "document", "document": document.summary()})

    try:
        report = await workspace.ingestor.ingest(inputs, on_progress, on_document)
        batch["status"] = "complete"
        batch["report"] = report.to_dict()
        await workspace.broadcast({
            "type": "complete",
            "batch_id": batch_id,
            "summary": report.summary,
            "attempted": report.attempted,
            "succeeded": report.succeeded,
        })
    except Exception as e:
        logger.exception("Error processing batch %s", batch_id)
        batch["status"] = "error"
        batch["error"] = str(e)
        await workspace.broadcast({"type": "error", "batch_id": batch_id, "message": str(e)})
    finally:
        workspace.active_batch = None


# Create the app instance for uvicorn
app = create_app()
