"""
AI assistant endpoints: chat, diagnostic explanations and recommendations.

Chat works anonymously; a bearer token adds the customer's details to the
conversation context and ties the session to the user.
"""

import logging
from typing import Optional

from app.auth import get_current_user, get_optional_user, require_staff
from app.dependencies import get_chat_pipeline, get_completer
from app.models.user import User
from app.schemas import ChatRequest, ExplainRequest, RecommendationRequest
from app.services import diagnostics
from app.services.chat_completer import ChatCompleter
from app.services.chat_pipeline import ChatPipeline
from app.services.database import get_db
from app.services.diagnostic_explainer import explain_code, recommend_services
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/chat")
async def chat(
    body: ChatRequest,
    user: Optional[User] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
    pipeline: ChatPipeline = Depends(get_chat_pipeline),
):
    """Send a message to the assistant and get its reply."""
    session, reply, _ = await pipeline.handle_message(
        db,
        body.message,
        actor=user,
        session_id=body.session_id,
        appointment_id=body.context.appointment_id,
        vehicle_id=body.context.vehicle_id,
        request_context=body.context.model_dump(by_alias=True, exclude_none=True),
    )
    return {
        "success": True,
        "message": "Message processed successfully",
        "data": {
            "sessionId": session.id,
            "response": reply.message,
            "timestamp": reply.timestamp.isoformat(),
            "messageId": reply.id,
        },
    }


@router.get("/chat/{session_id}")
async def chat_history(
    session_id: str,
    user: Optional[User] = Depends(get_optional_user),
    pipeline: ChatPipeline = Depends(get_chat_pipeline),
):
    session = await pipeline.get_history(session_id, user)
    return {
        "success": True,
        "message": "Chat history retrieved successfully",
        "data": {
            "sessionId": session.id,
            "messages": [m.to_api() for m in session.messages],
            "context": session.context.model_dump(mode="json", exclude_none=True),
            "isActive": session.is_active,
            "createdAt": session.created_at.isoformat(),
            "updatedAt": session.updated_at.isoformat(),
        },
    }


@router.post("/chat/{session_id}/close")
async def close_chat(
    session_id: str,
    user: Optional[User] = Depends(get_optional_user),
    pipeline: ChatPipeline = Depends(get_chat_pipeline),
):
    session = await pipeline.close_session(session_id, user)
    return {
        "success": True,
        "message": "Chat session closed successfully",
        "data": {"sessionId": session.id, "isActive": session.is_active},
    }


@router.post("/diagnostic/explain")
async def explain_diagnostic_code(
    body: ExplainRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    completer: ChatCompleter = Depends(get_completer),
):
    vehicle = await diagnostics.get_vehicle(db, body.vehicle_id, user) if body.vehicle_id else None
    explanation = await explain_code(body.code, vehicle, completer)
    return {
        "success": True,
        "message": "Diagnostic code explained successfully",
        "data": {"code": body.code, "explanation": explanation.to_api()},
    }


@router.post("/recommendations")
async def service_recommendations(
    body: RecommendationRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    completer: ChatCompleter = Depends(get_completer),
):
    vehicle = await diagnostics.get_vehicle(db, body.vehicle_id, user)
    recommendations = await recommend_services(vehicle, body.symptoms, completer)
    return {
        "success": True,
        "message": "Service recommendations generated successfully",
        "data": {"vehicleId": vehicle.id, "recommendations": recommendations},
    }


@router.get("/status")
async def assistant_status(pipeline: ChatPipeline = Depends(get_chat_pipeline)):
    return {
        "success": True,
        "message": "AI service status retrieved",
        "data": await pipeline.status(),
    }


@router.delete("/sessions/cleanup")
async def cleanup_sessions(
    user: User = Depends(require_staff),
    pipeline: ChatPipeline = Depends(get_chat_pipeline),
):
    """Remove closed sessions idle for longer than the configured threshold."""
    cleaned, remaining = await pipeline.cleanup()
    logger.info(f"Session cleanup requested by user {user.id}: {cleaned} removed")
    return {
        "success": True,
        "message": f"Cleaned up {cleaned} inactive sessions",
        "data": {"cleanedSessions": cleaned, "remainingSessions": remaining},
    }
