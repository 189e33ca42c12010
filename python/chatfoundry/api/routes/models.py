"""Model catalogue routes.

Route handlers for viewing selectable LLM models.
Routes are transport-only: each calls exactly one service function.

- GET /api/models: List active models with capabilities and provider

A model is listed iff it is active, not deleted, and its provider is not deleted.

All routes require authentication.
Response envelope: {"success": true, "models": [...]}
"""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from chatfoundry.api.deps import get_db
from chatfoundry.auth.middleware import Viewer, get_viewer
from chatfoundry.responses import success_response
from chatfoundry.services import model_registry

router = APIRouter(tags=["models"])


@router.get("/api/models")
def list_models(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """List selectable models, ordered by name.

    Returns:
        {"success": true, "models": [ModelOut, ...]}
    """
    models = model_registry.list_models(db)
    return success_response(models=[m.model_dump(mode="json") for m in models])
